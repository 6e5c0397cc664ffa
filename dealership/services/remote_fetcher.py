# -*- coding: utf-8 -*-
"""Download a remote image and work out what it is called and what type it is."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from dealership.exceptions import DownloadError, DownloadHttpError, InvalidContentTypeError
from dealership.services.url_resolver import ProviderUrlResolver

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "bmp")
GENERIC_BINARY_TYPES = ("application/octet-stream", "binary/octet-stream")
DEFAULT_FILENAME = "image"
DEFAULT_EXTENSION = "jpg"

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/x-ms-bmp": "bmp",
    "image/avif": "avif",
    "image/heic": "heic",
    "image/tiff": "tiff",
}
RECOGNIZED_EXTENSIONS = set(IMAGE_EXTENSIONS) | set(CONTENT_TYPE_EXTENSIONS.values())

_CD_EXTENDED = re.compile(r"filename\*\s*=\s*([^;]+)", re.IGNORECASE)
_CD_PLAIN = re.compile(r'filename\s*=\s*(?:"([^"]*)"|([^;]+))', re.IGNORECASE)


@dataclass
class DownloadedImage:
    data: bytes
    filename: str
    content_type: str
    source_url: str


def media_type(header_value: Optional[str]) -> str:
    """'image/JPEG; charset=binary' -> 'image/jpeg'"""
    return (header_value or "").split(";", 1)[0].strip().lower()


def url_extension(url: str) -> Optional[str]:
    path = urlparse(url).path.lower()
    if "." not in path.rsplit("/", 1)[-1]:
        return None
    ext = path.rsplit(".", 1)[-1]
    return ext if ext in IMAGE_EXTENSIONS else None


def is_image_like(content_type: str, url: str) -> bool:
    if "image" in content_type:
        return True
    if content_type in GENERIC_BINARY_TYPES:
        return True
    return not content_type and url_extension(url) is not None


def _decode_extended(value: str) -> str:
    # RFC 5987: charset'lang'percent-encoded
    value = value.strip().strip('"')
    if "''" not in value:
        return unquote(value)
    charset, _, encoded = value.partition("''")
    charset = (charset.split("'", 1)[0] or "utf-8").strip()
    try:
        return unquote(encoded, encoding=charset, errors="replace")
    except LookupError:
        return unquote(encoded, encoding="utf-8", errors="replace")


def filename_from_content_disposition(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    m = _CD_EXTENDED.search(header_value)
    if m:
        name = _decode_extended(m.group(1))
    else:
        m = _CD_PLAIN.search(header_value)
        if not m:
            return None
        name = (m.group(1) if m.group(1) is not None else m.group(2)).strip().strip("'\"")
        if name.lower().startswith("utf-8''"):
            name = _decode_extended(name)
    # never let a server pick a directory for us
    name = name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name or None


def ensure_extension(filename: str, content_type: str, url: str) -> str:
    """Append an extension from the content type, then the URL, then 'jpg', if the name lacks one."""
    if "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        if ext in RECOGNIZED_EXTENSIONS:
            return filename
    inferred = CONTENT_TYPE_EXTENSIONS.get(content_type) or url_extension(url) or DEFAULT_EXTENSION
    return f"{filename}.{inferred}"


class RemoteFetcher:
    """
    GET an image with browser-like headers and validate that it looks like one.

    The only retry is the SharePoint landing-page fallback: when a SharePoint
    link answers with HTML instead of a file, the embedded download URL is
    extracted once and fetched once. Network errors are not retried here.
    """

    def __init__(self, session: requests.Session, resolver: ProviderUrlResolver, *, timeout: float = 30) -> None:
        self.session = session
        self.resolver = resolver
        self.timeout = timeout

    def _get(self, url: str) -> requests.Response:
        try:
            resp = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            raise DownloadError(f"Request failed: {e.__class__.__name__}: {e}", url=url) from e
        if not 200 <= resp.status_code < 300:
            raise DownloadHttpError(
                f"HTTP {resp.status_code} while downloading image",
                status_code=resp.status_code,
                url=url,
            )
        return resp

    def _accepts(self, resp: requests.Response, url: str) -> bool:
        content_type = media_type(resp.headers.get("Content-Type"))
        if self.resolver.is_extraction_domain(url):
            # payload type from SharePoint is unreliable; only its HTML landing page is rejected
            return content_type != "text/html"
        return is_image_like(content_type, url)

    def _build(self, resp: requests.Response, url: str) -> DownloadedImage:
        content_type = media_type(resp.headers.get("Content-Type"))
        filename = filename_from_content_disposition(resp.headers.get("Content-Disposition")) or DEFAULT_FILENAME
        filename = ensure_extension(filename, content_type, url)
        logger.info(
            "[FETCH] Downloaded %d bytes from %s (type=%s, filename=%s)",
            len(resp.content), urlparse(url).hostname, content_type or "-", filename,
        )
        return DownloadedImage(data=resp.content, filename=filename, content_type=content_type, source_url=url)

    def download(self, url: str) -> DownloadedImage:
        resolved = self.resolver.resolve(url)
        resp = self._get(resolved.url)
        if self._accepts(resp, resolved.url):
            return self._build(resp, resolved.url)

        content_type = media_type(resp.headers.get("Content-Type"))
        if not resolved.extraction_candidate:
            raise InvalidContentTypeError(
                f"Response is not an image (content-type={content_type or 'empty'})",
                content_type=content_type,
                url=url,
            )

        logger.info("[FETCH] %s served a landing page; trying embedded download URL", urlparse(url).hostname)
        direct_url = self.resolver.extract(resolved.original_url)
        resp = self._get(direct_url)
        if self._accepts(resp, direct_url):
            return self._build(resp, direct_url)

        content_type = media_type(resp.headers.get("Content-Type"))
        raise InvalidContentTypeError(
            f"Extracted download is not an image (content-type={content_type or 'empty'})",
            content_type=content_type,
            url=url,
        )
