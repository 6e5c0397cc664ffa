"""Application-specific exceptions.

Two families live here:

* request-level errors (:class:`ValidationError`, :class:`UpsertError`,
  :class:`VehicleNotFoundError`) which route handlers translate into HTTP
  responses, and
* per-image errors rooted at :class:`ImageIngestionError`, raised inside a
  single image's resolve -> download -> upload chain and converted into a
  failed :class:`~dealership.services.image_ingestion.ImageIngestionResult`
  before they can reach the webhook response.
"""

from __future__ import annotations


class ValidationError(ValueError):
    """Raised when a webhook payload fails validation.

    Parameters
    ----------
    message:
        Human-readable error message.
    field:
        Optional name of the field/parameter that failed validation.
    code:
        Optional machine-readable error code.
    details:
        Optional extra context (e.g. the list of missing fields).
    """

    def __init__(
        self,
        message: str = "Validation error",
        *,
        field: str | None = None,
        code: str | None = None,
        details: object | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.code = code
        self.details = details


class UpsertError(RuntimeError):
    """Raised when the vehicle row itself cannot be written."""


class VehicleNotFoundError(LookupError):
    """Raised when a webhook addresses a vehicle that does not exist."""


class ImageIngestionError(Exception):
    """Base class for failures that only affect a single image."""

    def __init__(self, message: str, *, url: str | None = None, position: object = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.position = position


class InvalidImageRequestError(ImageIngestionError):
    """The image request itself is unusable (blank url, bad or duplicate position)."""


class ExtractionError(ImageIngestionError):
    """The provider landing page did not yield a direct download URL."""


class InvalidContentTypeError(ImageIngestionError):
    """The downloaded resource does not look like an image."""

    def __init__(self, message: str, *, content_type: str = "", **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.content_type = content_type


class DownloadError(ImageIngestionError):
    """The image could not be fetched (connection, timeout, too many redirects)."""


class DownloadHttpError(DownloadError):
    """The remote server answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code


class StorageUploadError(ImageIngestionError):
    """The storage backend rejected the upload."""


class PublicUrlUnavailableError(ImageIngestionError):
    """The object was stored but no public URL could be derived for it."""


class ImageReconciliationError(RuntimeError):
    """Wraps anything that goes wrong while swapping a vehicle's image set."""
