"""unistore: one storage contract for cloud object stores and the local filesystem."""

from .storage import (
    AddressingStyle,
    ObjectStorageClient,
    RetryPolicy,
    StorageConfigurationError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StorageObject,
    StoragePermissionError,
    create_storage_client,
    normalize_key,
)

__version__ = "0.1.0"

__all__ = [
    "AddressingStyle",
    "ObjectStorageClient",
    "RetryPolicy",
    "StorageConfigurationError",
    "StorageConnectionError",
    "StorageError",
    "StorageNotFoundError",
    "StorageObject",
    "StoragePermissionError",
    "create_storage_client",
    "normalize_key",
]
