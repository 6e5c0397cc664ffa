import sys
import threading
from pathlib import Path

import pytest
import requests
from requests.structures import CaseInsensitiveDict

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from main import create_app, db  # noqa: E402
from dealership.extensions import HTTP_SESSION_KEY  # noqa: E402

# 1x1 transparent PNG
PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00\x1f\x15\xc4\x89"
    b"\x00\x00\x00\rIDATx\x9cc\xf8\x0f\x00\x00\x01\x01\x00\x05\x18\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
)


def make_response(url, status=200, content=b"", content_type=None, headers=None):
    """A real requests.Response, filled in without touching the network."""
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp._content = content
    resp.encoding = "utf-8"
    resp.headers = CaseInsensitiveDict(headers or {})
    if content_type:
        resp.headers["Content-Type"] = content_type
    return resp


def image_response(url, content_type="image/png", content=PNG_BYTES, headers=None):
    return make_response(url, content=content, content_type=content_type, headers=headers)


class FakeHttpSession:
    """
    Drop-in for requests.Session.get: url -> Response (or exception to raise).
    Unknown urls answer 404. Calls are recorded; image threads share one instance.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self._lock = threading.Lock()

    def add(self, url, result):
        self.routes[url] = result
        return self

    def get(self, url, **kwargs):
        with self._lock:
            self.calls.append((url, kwargs))
        result = self.routes.get(url)
        if result is None:
            return make_response(url, status=404, content=b"not found", content_type="text/plain")
        if isinstance(result, Exception):
            raise result
        return result

    def called_urls(self):
        with self._lock:
            return [url for url, _ in self.calls]


@pytest.fixture
def http_session():
    return FakeHttpSession()


@pytest.fixture
def app(monkeypatch, tmp_path, http_session):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_DIR", str(tmp_path / "vehicle-images"))
    monkeypatch.delenv("SKIP_CREATE_ALL", raising=False)
    monkeypatch.delenv("RENDER", raising=False)
    monkeypatch.delenv("MAX_IMAGES_PER_VEHICLE", raising=False)
    app = create_app()
    app.config.update(TESTING=True)
    app.extensions[HTTP_SESSION_KEY] = http_session
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
