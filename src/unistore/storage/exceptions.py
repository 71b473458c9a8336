"""Common exception hierarchy for object storage backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .base import StorageObject


class StorageError(Exception):
    """Base exception for all storage operations.

    ``partial_results`` is only populated by ``list_objects`` when a page
    fails after its retries: it carries every object collected before the
    failing page so callers can decide what to do with an incomplete listing.
    """

    def __init__(
        self,
        message: str,
        key: str | None = None,
        cause: Exception | None = None,
        partial_results: list[StorageObject] | None = None,
    ):
        self.key = key
        self.cause = cause
        self.partial_results = partial_results
        super().__init__(message)


class StorageNotFoundError(StorageError):
    """Raised when a requested key does not exist."""


class StoragePermissionError(StorageError):
    """Raised when credentials are invalid or access is denied."""


class StorageConnectionError(StorageError):
    """Raised when the storage backend stays unreachable after all retries."""


class StorageConfigurationError(StorageError, ValueError):
    """Raised for invalid backend configuration or a backend that was closed."""
