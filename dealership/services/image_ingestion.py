# -*- coding: utf-8 -*-
"""
Fan-out ingestion of a vehicle's remote images.

Every request runs its own resolve -> download -> upload chain in a worker
thread and comes back as an ImageIngestionResult. A failing image never
cancels or affects the others, and ingest() never raises: it returns the
records for the images that made it, possibly none.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from dealership.exceptions import ImageIngestionError, InvalidImageRequestError
from dealership.services.object_storage import ObjectStorageUploader
from dealership.services.remote_fetcher import RemoteFetcher
from dealership.utils.validation import ImageRequest

logger = logging.getLogger(__name__)

INLINE_IMAGE_PREFIX = "data:"
DEFAULT_MAX_IMAGES = 10
DEFAULT_MAX_WORKERS = 8


@dataclass(frozen=True)
class PendingImageRecord:
    """An uploaded image waiting to be written as a VehicleImage row."""

    image_url: str
    position: int
    alt_text: Optional[str] = None


@dataclass
class ImageIngestionResult:
    position: object
    source_url: str
    record: Optional[PendingImageRecord] = None
    error: Optional[ImageIngestionError] = None

    @property
    def ok(self) -> bool:
        return self.record is not None

    @classmethod
    def success(cls, request: ImageRequest, record: PendingImageRecord) -> "ImageIngestionResult":
        return cls(position=request.position, source_url=request.url, record=record)

    @classmethod
    def failure(cls, request: ImageRequest, error: ImageIngestionError) -> "ImageIngestionResult":
        if error.url is None:
            error.url = request.url
        if error.position is None:
            error.position = request.position
        return cls(position=request.position, source_url=request.url, error=error)


def is_inline_image(url: str) -> bool:
    return url[: len(INLINE_IMAGE_PREFIX)].lower() == INLINE_IMAGE_PREFIX


def _short_url(url: str, limit: int = 120) -> str:
    return url if len(url) <= limit else url[:limit] + "..."


class ImageIngestionOrchestrator:
    def __init__(
        self,
        fetcher: RemoteFetcher,
        uploader: ObjectStorageUploader,
        *,
        max_images: int = DEFAULT_MAX_IMAGES,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.fetcher = fetcher
        self.uploader = uploader
        self.max_images = max_images
        self.max_workers = max(1, max_workers)

    def check_request(self, request: ImageRequest, claimed_positions: set) -> None:
        """Reject blank urls, out-of-range positions and positions already claimed in this batch."""
        if not request.url:
            raise InvalidImageRequestError("image_url is required")
        position = request.position
        if position is None:
            raise InvalidImageRequestError("position must be an integer")
        if not 1 <= position <= self.max_images:
            raise InvalidImageRequestError(f"position must be between 1 and {self.max_images}, got {position}")
        if position in claimed_positions:
            raise InvalidImageRequestError(f"duplicate position {position}")

    def _process(self, vehicle_id: str, request: ImageRequest) -> ImageIngestionResult:
        try:
            downloaded = self.fetcher.download(request.url)
            public_url = self.uploader.upload(
                downloaded.data,
                vehicle_id,
                request.position,
                downloaded.filename,
                downloaded.content_type,
            )
        except ImageIngestionError as e:
            return ImageIngestionResult.failure(request, e)
        except Exception as e:
            logger.exception("[INGEST] Unexpected error for position=%s url=%s", request.position, _short_url(request.url))
            wrapped = ImageIngestionError(f"Unexpected {e.__class__.__name__}: {e}")
            return ImageIngestionResult.failure(request, wrapped)
        record = PendingImageRecord(image_url=public_url, position=request.position, alt_text=request.alt_text)
        return ImageIngestionResult.success(request, record)

    def ingest_all(self, vehicle_id: str, vehicle_slug: str, requests: Sequence[ImageRequest]) -> List[ImageIngestionResult]:
        """Run every request and return one result per non-inline request."""
        results: List[ImageIngestionResult] = []
        runnable: List[ImageRequest] = []
        claimed: set = set()

        for request in requests:
            if is_inline_image(request.url):
                logger.info("[INGEST] Skipping inline image at position=%s for %s", request.position, vehicle_slug)
                continue
            try:
                self.check_request(request, claimed)
            except InvalidImageRequestError as e:
                results.append(ImageIngestionResult.failure(request, e))
                continue
            claimed.add(request.position)
            runnable.append(request)

        if runnable:
            workers = min(self.max_workers, len(runnable))
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as pool:
                futures = [pool.submit(self._process, vehicle_id, request) for request in runnable]
                for future in concurrent.futures.as_completed(futures):
                    results.append(future.result())

        for result in results:
            if not result.ok:
                logger.warning(
                    "[INGEST] Dropped image position=%s url=%s: %s: %s",
                    result.position,
                    _short_url(result.source_url),
                    result.error.__class__.__name__,
                    result.error.message if result.error else "",
                )
        succeeded = sum(1 for r in results if r.ok)
        logger.info(
            "[INGEST] vehicle=%s slug=%s requested=%d processed=%d succeeded=%d",
            vehicle_id, vehicle_slug, len(requests), len(results), succeeded,
        )
        return results

    def ingest(self, vehicle_id: str, vehicle_slug: str, requests: Iterable[ImageRequest]) -> List[PendingImageRecord]:
        results = self.ingest_all(vehicle_id, vehicle_slug, list(requests))
        return [r.record for r in results if r.ok]
