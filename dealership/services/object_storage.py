# -*- coding: utf-8 -*-
"""Object storage backends and the uploader that places vehicle images in them.

Backends expose the same two calls:

    upload(path, data, options)  -> None, raises StorageUploadError
    get_public_url(path)         -> str or None

``options`` carries ``content_type`` and ``upsert``; with ``upsert=False`` a
backend must refuse to replace an existing object.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Mapping, Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from dealership.exceptions import PublicUrlUnavailableError, StorageUploadError
from dealership.models import id_suffix
from dealership.services.remote_fetcher import CONTENT_TYPE_EXTENSIONS, DEFAULT_EXTENSION

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "vehicles"
EXTENSION_CONTENT_TYPES = {ext: ctype for ctype, ext in CONTENT_TYPE_EXTENSIONS.items()}
EXTENSION_CONTENT_TYPES.update({"jpg": "image/jpeg", "jpeg": "image/jpeg", "bmp": "image/bmp"})
DEFAULT_CONTENT_TYPE = "image/jpeg"


class S3ObjectStorage:
    """S3-compatible bucket (AWS S3, R2, hosted Postgres-platform storage, MinIO)."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        public_base_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.public_base_url = (public_base_url or "").rstrip("/") or None
        self.client = client or boto3.client("s3", endpoint_url=endpoint_url or None, region_name=region or None)

    def upload(self, path: str, data: bytes, options: Optional[Mapping[str, Any]] = None) -> None:
        options = options or {}
        params = {
            "Bucket": self.bucket,
            "Key": path,
            "Body": data,
            "ContentType": options.get("content_type") or DEFAULT_CONTENT_TYPE,
        }
        if not options.get("upsert", False):
            # conditional write: fails with 412 if the key already exists
            params["IfNoneMatch"] = "*"
        try:
            self.client.put_object(**params)
        except ClientError as e:
            error = e.response.get("Error", {})
            message = error.get("Message") or error.get("Code") or str(e)
            raise StorageUploadError(f"Storage rejected upload: {message}") from e
        except BotoCoreError as e:
            raise StorageUploadError(f"Storage unavailable: {e}") from e

    def get_public_url(self, path: str) -> Optional[str]:
        if not self.public_base_url:
            return None
        return f"{self.public_base_url}/{quote(path)}"


class LocalObjectStorage:
    """Files under a local directory; used for development and tests."""

    def __init__(self, root_dir: str, *, public_base_url: str = "/media/vehicle-images") -> None:
        self.root_dir = os.path.abspath(root_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root_dir, path))
        if not full.startswith(self.root_dir + os.sep):
            raise StorageUploadError(f"Invalid storage path: {path}")
        return full

    def upload(self, path: str, data: bytes, options: Optional[Mapping[str, Any]] = None) -> None:
        options = options or {}
        full = self._full_path(path)
        mode = "wb" if options.get("upsert", False) else "xb"
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, mode) as f:
                f.write(data)
        except FileExistsError as e:
            raise StorageUploadError(f"Object already exists: {path}") from e
        except OSError as e:
            raise StorageUploadError(f"Local storage write failed: {e.strerror or e}") from e

    def get_public_url(self, path: str) -> Optional[str]:
        return f"{self.public_base_url}/{quote(path)}"


def build_object_storage(config: Mapping[str, Any]):
    backend = (config.get("STORAGE_BACKEND") or "local").lower()
    if backend == "s3":
        return S3ObjectStorage(
            config["STORAGE_BUCKET"],
            endpoint_url=config.get("STORAGE_ENDPOINT_URL"),
            region=config.get("STORAGE_REGION"),
            public_base_url=config.get("STORAGE_PUBLIC_BASE_URL"),
        )
    if backend == "local":
        return LocalObjectStorage(
            config["LOCAL_STORAGE_DIR"],
            public_base_url=config.get("LOCAL_STORAGE_PUBLIC_BASE_URL") or "/media/vehicle-images",
        )
    raise RuntimeError(f"Unknown STORAGE_BACKEND={backend!r} (expected 's3' or 'local')")


def file_extension(filename: str) -> str:
    if "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        if ext.isalnum():
            return ext
    return DEFAULT_EXTENSION


def choose_content_type(content_type: Optional[str], filename: str) -> str:
    if content_type and content_type.startswith("image/"):
        return content_type
    return EXTENSION_CONTENT_TYPES.get(file_extension(filename), DEFAULT_CONTENT_TYPE)


def build_object_path(vehicle_id: str, position: int, filename: str, *, now_ms: Optional[int] = None) -> str:
    """vehicles/<id suffix>/<position>-<epoch ms>.<ext>

    The id suffix, not the slug: slugs are often Hebrew and make poor object keys.
    """
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{STORAGE_PREFIX}/{id_suffix(vehicle_id)}/{position}-{stamp}.{file_extension(filename)}"


class ObjectStorageUploader:
    def __init__(self, storage) -> None:
        self.storage = storage

    def upload(
        self,
        data: bytes,
        vehicle_id: str,
        position: int,
        filename: str,
        content_type: Optional[str] = None,
    ) -> str:
        """Store the bytes under a fresh path and return the public URL."""
        path = build_object_path(vehicle_id, position, filename)
        ctype = choose_content_type(content_type, filename)
        self.storage.upload(path, data, {"content_type": ctype, "upsert": False})
        public_url = self.storage.get_public_url(path)
        if not public_url:
            raise PublicUrlUnavailableError(f"No public URL for stored object {path}")
        logger.info("[STORAGE] Stored %s (%d bytes, %s)", path, len(data), ctype)
        return public_url
