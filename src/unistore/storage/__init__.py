"""Unified object storage over S3, GCS, Azure Blob Storage and the local filesystem."""

from .base import ObjectStorageClient, StorageObject
from .config import (
    AzureConfig,
    FileSystemConfig,
    GcsConfig,
    RetrySettings,
    S3Config,
    StorageConfig,
)
from .exceptions import (
    StorageConfigurationError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)
from .factory import create_storage_client
from .filesystem_client import FileSystemStorageClient
from .keys import AddressingStyle, normalize_key
from .retry import RetryPolicy, retry

__all__ = [
    "AddressingStyle",
    "AzureConfig",
    "FileSystemConfig",
    "FileSystemStorageClient",
    "GcsConfig",
    "ObjectStorageClient",
    "RetryPolicy",
    "RetrySettings",
    "S3Config",
    "StorageConfig",
    "StorageObject",
    "StorageError",
    "StorageNotFoundError",
    "StoragePermissionError",
    "StorageConnectionError",
    "StorageConfigurationError",
    "create_storage_client",
    "normalize_key",
    "retry",
]
