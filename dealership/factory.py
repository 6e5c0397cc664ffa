# -*- coding: utf-8 -*-
# ===================================================================
# 🚗 Dealership storefront – CRM webhooks & vehicle image ingestion
# ===================================================================

import os
import uuid
import logging
import time as pytime
from urllib.parse import urlparse

from flask import Flask, request, g
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.exceptions import RequestEntityTooLarge

from dealership.extensions import db, migrate, HTTP_SESSION_KEY, OBJECT_STORAGE_KEY
from dealership import models  # noqa: F401  (registers the tables)
from dealership.services.http_client import build_http_session
from dealership.services.object_storage import build_object_storage
from dealership.utils.http_helpers import get_request_id, webhook_error

# =========================
# ========= CONFIG ========
# =========================
DEFAULT_MAX_IMAGES_PER_VEHICLE = 10
DEFAULT_IMAGE_FETCH_TIMEOUT_SEC = 30
DEFAULT_INGEST_MAX_WORKERS = 8
DEFAULT_WEBHOOK_MAX_CONTENT_LENGTH = 1024 * 1024


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def load_ingestion_config(app: Flask) -> None:
    """Image ingestion + storage settings from the environment."""
    max_images = _env_int("MAX_IMAGES_PER_VEHICLE", DEFAULT_MAX_IMAGES_PER_VEHICLE)
    if max_images < 1:
        raise RuntimeError("MAX_IMAGES_PER_VEHICLE must be at least 1")
    app.config["MAX_IMAGES_PER_VEHICLE"] = max_images
    app.config["IMAGE_FETCH_TIMEOUT_SEC"] = _env_int("IMAGE_FETCH_TIMEOUT_SEC", DEFAULT_IMAGE_FETCH_TIMEOUT_SEC)
    app.config["INGEST_MAX_WORKERS"] = _env_int("INGEST_MAX_WORKERS", DEFAULT_INGEST_MAX_WORKERS)

    app.config["STORAGE_BACKEND"] = os.environ.get("STORAGE_BACKEND", "local").strip().lower() or "local"
    app.config["STORAGE_BUCKET"] = os.environ.get("STORAGE_BUCKET", "vehicle-images").strip()
    app.config["STORAGE_ENDPOINT_URL"] = os.environ.get("STORAGE_ENDPOINT_URL", "").strip() or None
    app.config["STORAGE_REGION"] = os.environ.get("STORAGE_REGION", "").strip() or None
    app.config["STORAGE_PUBLIC_BASE_URL"] = os.environ.get("STORAGE_PUBLIC_BASE_URL", "").strip() or None
    app.config["LOCAL_STORAGE_DIR"] = (
        os.environ.get("LOCAL_STORAGE_DIR", "").strip()
        or os.path.join(app.instance_path, "vehicle-images")
    )
    app.config["LOCAL_STORAGE_PUBLIC_BASE_URL"] = (
        os.environ.get("LOCAL_STORAGE_PUBLIC_BASE_URL", "").strip() or "/media/vehicle-images"
    )


# ========================================
# ===== ★★★ Factory ★★★ =====
# ========================================
def create_app():
    app = Flask(__name__)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger(__name__)

    # Cloudflare -> Render proxy chain typically needs x_for=1, x_proto=1, x_host=1
    trusted_proxy_count = _env_int("TRUSTED_PROXY_COUNT", 1)
    app.wsgi_app = ProxyFix(
        app.wsgi_app,
        x_for=trusted_proxy_count,
        x_proto=trusted_proxy_count,
        x_host=trusted_proxy_count,
        x_prefix=0
    )
    logger.info(f"ProxyFix configured with trusted_proxy_count={trusted_proxy_count}")

    # ======================
    # ✅ Render DB hard-fail
    # ======================
    db_url = os.environ.get("DATABASE_URL", "").strip()

    # Normalize deprecated prefix for SQLAlchemy
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)

    is_render = os.environ.get("RENDER", "").strip() != ""
    if is_render and not db_url:
        raise RuntimeError(
            "DATABASE_URL is missing on Render. "
            "Set DATABASE_URL (Internal Postgres URL) in Render Environment Variables."
        )

    app.config["SQLALCHEMY_DATABASE_URI"] = db_url if db_url else "sqlite:///:memory:"
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Webhook bodies carry image URLs, not image bytes
    app.config["MAX_CONTENT_LENGTH"] = _env_int("WEBHOOK_MAX_CONTENT_LENGTH", DEFAULT_WEBHOOK_MAX_CONTENT_LENGTH)

    # pool_pre_ping: test connection before reusing from pool
    # pool_recycle: recycle connections after 240 seconds (Postgres timeout ~300s)
    if db_url and "postgresql" in db_url:
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_pre_ping": True,
            "pool_recycle": 240,
            "pool_size": 5,
            "max_overflow": 10,
            "connect_args": {"connect_timeout": 10, "sslmode": "prefer"}
        }
        print("[BOOT] SQLAlchemy configured with pool_pre_ping=True, pool_recycle=240")

    if db_url:
        parsed_db_url = urlparse(db_url)
        safe_host = parsed_db_url.hostname or ""
        safe_port = f":{parsed_db_url.port}" if parsed_db_url.port else ""
        safe_db = (parsed_db_url.path or "").lstrip("/")
        logger.info("[DB] DATABASE host=%s%s db=%s", safe_host, safe_port, safe_db or "(default)")
    else:
        print("[BOOT] ⚠️ DATABASE_URL not set. Using in-memory sqlite (LOCAL DEV ONLY).")

    load_ingestion_config(app)

    # Init
    db.init_app(app)
    migrate.init_app(app, db)

    # One HTTP session and one storage client per process, passed down explicitly
    app.extensions[HTTP_SESSION_KEY] = build_http_session()
    app.extensions[OBJECT_STORAGE_KEY] = build_object_storage(app.config)
    logger.info(
        "[BOOT] storage backend=%s max_images=%s fetch_timeout=%ss workers=%s",
        app.config["STORAGE_BACKEND"],
        app.config["MAX_IMAGES_PER_VEHICLE"],
        app.config["IMAGE_FETCH_TIMEOUT_SEC"],
        app.config["INGEST_MAX_WORKERS"],
    )
    if app.config["STORAGE_BACKEND"] == "s3" and not app.config["STORAGE_PUBLIC_BASE_URL"]:
        logger.warning("[BOOT] STORAGE_PUBLIC_BASE_URL not set; every image upload will fail to get a public URL")

    @app.before_request
    def assign_request_id():
        """
        Assign a request_id + start_time early and log the request line.
        """
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        g.start_time = pytime.perf_counter()
        logger.info(
            f"[REQ] request_id={g.request_id} {request.method} {request.path} "
            f"host={request.host} xff={request.headers.get('X-Forwarded-For', '')}"
        )

    @app.errorhandler(RequestEntityTooLarge)
    def handle_request_too_large(e):
        return webhook_error("Payload exceeds limit", status=413)

    @app.after_request
    def apply_response_headers(response):
        rid = get_request_id()
        response.headers.setdefault("X-Request-ID", rid)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if request.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"

        duration_ms = None
        if hasattr(g, "start_time"):
            duration_ms = (pytime.perf_counter() - g.start_time) * 1000
        logger.info(
            f"[RESP] request_id={rid} method={request.method} path={request.path} "
            f"status={response.status_code} duration_ms={(duration_ms or 0):.2f}"
        )
        return response

    @app.teardown_request
    def teardown_request_handler(exc):
        try:
            db.session.rollback()
        except Exception:
            logger.exception("[DB] teardown rollback failed")
        finally:
            db.session.remove()

    # ==========================
    # ✅ create_all (dev / tests)
    # ==========================
    with app.app_context():
        if is_render:
            print("[DB] ⏭️ Render detected - skipping db.create_all(); run `flask db upgrade` via release/preDeploy")
        elif os.environ.get("SKIP_CREATE_ALL", "").lower() in ("1", "true", "yes"):
            print("[DB] ⏭️ SKIP_CREATE_ALL enabled - skipping db.create_all()")
        else:
            db.create_all()
            print("[DB] ✅ create_all executed")

    # ------------------
    # ===== ROUTES =====
    # ------------------
    from dealership.routes.public_routes import bp as public_bp
    from dealership.routes.vehicle_routes import bp as vehicles_bp
    from dealership.routes.webhook_routes import bp as webhooks_bp
    app.register_blueprint(public_bp)
    app.register_blueprint(vehicles_bp)
    app.register_blueprint(webhooks_bp)

    @app.cli.command("init-db")
    def init_db_command():
        with app.app_context():
            db.create_all()
        print("Initialized the database tables.")

    return app
