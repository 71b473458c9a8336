"""Factory for creating object storage clients based on configuration."""

import logging
import os

from .base import ObjectStorageClient
from .config import AzureConfig, FileSystemConfig, GcsConfig, RetrySettings, S3Config
from .exceptions import StorageConfigurationError
from .keys import AddressingStyle

log = logging.getLogger(__name__)

SUPPORTED_STORAGE_TYPES = ("s3", "gcs", "azure", "filesystem")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def create_storage_client(
    storage_type: str | None = None,
    bucket_name: str | None = None,
) -> ObjectStorageClient:
    """Create an ObjectStorageClient based on environment or explicit config.

    Args:
        storage_type: Override backend type. Reads OBJECT_STORAGE_TYPE if None. Defaults to "s3".
        bucket_name: Bucket (S3/GCS), container (Azure) or base directory
            (filesystem). Falls back to OBJECT_STORAGE_BUCKET_NAME and then
            to backend-specific env vars.

    Returns:
        Configured ObjectStorageClient instance.

    Raises:
        StorageConfigurationError: If required configuration is missing,
            invalid, or storage_type is unsupported.
    """
    backend = (storage_type or os.getenv("OBJECT_STORAGE_TYPE", "s3")).lower()

    if backend == "s3":
        return _create_s3_client(bucket_name)
    if backend == "gcs":
        return _create_gcs_client(bucket_name)
    if backend == "azure":
        return _create_azure_client(bucket_name)
    if backend == "filesystem":
        return _create_filesystem_client(bucket_name)

    raise StorageConfigurationError(
        f"Unsupported storage type: {backend!r}. Supported: {', '.join(SUPPORTED_STORAGE_TYPES)}"
    )


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUE_VALUES


def _retry_settings() -> RetrySettings:
    values: dict = {}
    max_retries = os.getenv("OBJECT_STORAGE_MAX_RETRIES")
    backoff = os.getenv("OBJECT_STORAGE_RETRY_BACKOFF")
    if max_retries:
        values["max_retries"] = max_retries
    if backoff:
        values["backoff_base"] = backoff
    return RetrySettings.build(**values)


def _require(value: str | None, message: str) -> str:
    if not value:
        raise StorageConfigurationError(message)
    return value


def _create_s3_client(bucket_name: str | None) -> ObjectStorageClient:
    from .s3_client import S3StorageClient

    resolved_bucket = _require(
        bucket_name or os.getenv("OBJECT_STORAGE_BUCKET_NAME") or os.getenv("S3_BUCKET_NAME"),
        "Bucket name required: set OBJECT_STORAGE_BUCKET_NAME, S3_BUCKET_NAME, or pass bucket_name",
    )
    values: dict = {
        "bucket": resolved_bucket,
        "region": os.getenv("S3_REGION", "us-east-1"),
        "endpoint_url": os.getenv("S3_ENDPOINT_URL"),
        "public_endpoint": os.getenv("S3_PUBLIC_ENDPOINT"),
        "access_key_id": os.getenv("AWS_ACCESS_KEY_ID"),
        "secret_access_key": os.getenv("AWS_SECRET_ACCESS_KEY"),
        "session_token": os.getenv("AWS_SESSION_TOKEN"),
        "role_arn": os.getenv("AWS_ROLE_ARN"),
        "addressing_style": (
            AddressingStyle.PATH if _env_flag("S3_FORCE_PATH_STYLE") else AddressingStyle.VIRTUAL_HOSTED
        ),
        "cache_control": os.getenv("S3_CACHE_CONTROL"),
        "retry": _retry_settings(),
    }
    if os.getenv("S3_ACL"):
        values["acl"] = os.getenv("S3_ACL")
    if os.getenv("AWS_ROLE_SESSION_NAME"):
        values["role_session_name"] = os.getenv("AWS_ROLE_SESSION_NAME")
    log.debug("Creating S3 storage client for bucket %s", resolved_bucket)
    return S3StorageClient(S3Config.build(**values))


def _create_gcs_client(bucket_name: str | None) -> ObjectStorageClient:
    from .gcs_client import GcsStorageClient

    resolved_bucket = _require(
        bucket_name or os.getenv("OBJECT_STORAGE_BUCKET_NAME") or os.getenv("GCS_BUCKET_NAME"),
        "Bucket name required: set OBJECT_STORAGE_BUCKET_NAME, GCS_BUCKET_NAME, or pass bucket_name",
    )
    log.debug("Creating GCS storage client for bucket %s", resolved_bucket)
    return GcsStorageClient(
        GcsConfig.build(
            bucket=resolved_bucket,
            project=os.getenv("GCS_PROJECT"),
            credentials_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS"),
            public_read=_env_flag("GCS_PUBLIC_READ"),
            retry=_retry_settings(),
        )
    )


def _create_azure_client(bucket_name: str | None) -> ObjectStorageClient:
    from .azure_client import AzureBlobStorageClient

    resolved_container = _require(
        bucket_name or os.getenv("OBJECT_STORAGE_BUCKET_NAME") or os.getenv("AZURE_CONTAINER_NAME"),
        "Container name required: set OBJECT_STORAGE_BUCKET_NAME, AZURE_CONTAINER_NAME, or pass bucket_name",
    )
    log.debug("Creating Azure storage client for container %s", resolved_container)
    return AzureBlobStorageClient(
        AzureConfig.build(
            container=resolved_container,
            connection_string=os.getenv("AZURE_STORAGE_CONNECTION_STRING"),
            account_name=os.getenv("AZURE_STORAGE_ACCOUNT_NAME"),
            account_key=os.getenv("AZURE_STORAGE_ACCOUNT_KEY"),
            public_read=_env_flag("AZURE_PUBLIC_READ"),
            retry=_retry_settings(),
        )
    )


def _create_filesystem_client(base_path: str | None) -> ObjectStorageClient:
    from .filesystem_client import FileSystemStorageClient

    resolved_path = _require(
        base_path or os.getenv("FILESYSTEM_STORAGE_PATH"),
        "Base path required: set FILESYSTEM_STORAGE_PATH or pass bucket_name",
    )
    log.debug("Creating filesystem storage client at %s", resolved_path)
    return FileSystemStorageClient(
        FileSystemConfig.build(
            base_path=resolved_path,
            public_endpoint=os.getenv("FILESYSTEM_PUBLIC_ENDPOINT"),
        )
    )
