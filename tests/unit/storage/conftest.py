from unittest.mock import patch

import pytest

STORAGE_ENV_VARS = [
    "OBJECT_STORAGE_TYPE",
    "OBJECT_STORAGE_BUCKET_NAME",
    "OBJECT_STORAGE_MAX_RETRIES",
    "OBJECT_STORAGE_RETRY_BACKOFF",
    "S3_BUCKET_NAME",
    "S3_ENDPOINT_URL",
    "S3_PUBLIC_ENDPOINT",
    "S3_REGION",
    "S3_FORCE_PATH_STYLE",
    "S3_CACHE_CONTROL",
    "S3_ACL",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "AWS_ROLE_ARN",
    "AWS_ROLE_SESSION_NAME",
    "GCS_BUCKET_NAME",
    "GCS_PROJECT",
    "GCS_PUBLIC_READ",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "AZURE_CONTAINER_NAME",
    "AZURE_STORAGE_CONNECTION_STRING",
    "AZURE_STORAGE_ACCOUNT_NAME",
    "AZURE_STORAGE_ACCOUNT_KEY",
    "AZURE_PUBLIC_READ",
    "FILESYSTEM_STORAGE_PATH",
    "FILESYSTEM_PUBLIC_ENDPOINT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in STORAGE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture()
def no_sleep():
    """Skip backoff delays in retried backend calls."""
    with patch("unistore.storage.retry.time.sleep") as sleep:
        yield sleep
