"""Azure Blob Storage client."""

import io
import logging
from datetime import datetime, timedelta, timezone
from typing import IO, BinaryIO, Iterable
from urllib.parse import quote

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from .base import (
    PRESIGNED_URL_EXPIRY_SECONDS,
    Content,
    StorageObject,
    ensure_open,
    guess_content_type,
    object_name,
    read_content,
    retrieve_to_temporary_file,
    utcnow,
)
from .config import AzureConfig
from .exceptions import (
    StorageConfigurationError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)
from .keys import AddressingStyle, normalize_key, normalize_prefix, path_for_key

log = logging.getLogger(__name__)

# Blob batch requests accept at most 256 sub-requests.
_DELETE_BATCH_SIZE = 256


def is_transient_error(error: Exception) -> bool:
    if isinstance(error, (ServiceRequestError, ServiceResponseError)):
        return True
    if isinstance(error, HttpResponseError):
        status = error.status_code or 0
        return status >= 500 or status == 429
    return False


class AzureBlobStorageClient:
    """Azure Blob Storage client. The container is the first URL path segment."""

    def __init__(self, config: AzureConfig):
        self._config = config
        self._container_name = config.container
        self._account_name = config.account_name
        self._account_key = config.account_key
        self._retry = config.retry.to_policy(retry_if=is_transient_error)
        self._closed = False

        # The SDK's own retry policy is disabled; every call goes through ours.
        try:
            if config.connection_string:
                self._service_client = BlobServiceClient.from_connection_string(
                    config.connection_string, retry_total=0
                )
                if not self._account_key:
                    self._account_key = self._extract_key_from_connection_string(
                        config.connection_string
                    )
            else:
                account_url = f"https://{config.account_name}.blob.core.windows.net"
                self._service_client = BlobServiceClient(
                    account_url=account_url, credential=config.account_key, retry_total=0
                )
        except ValueError as e:
            raise StorageConfigurationError(
                f"Failed to create Azure client for container '{self._container_name}': {e}",
                cause=e,
            ) from e

        if not self._account_name:
            self._account_name = self._service_client.account_name
        self._container_client = self._service_client.get_container_client(self._container_name)
        log.info(
            "AzureBlobStorageClient initialized. Account: %s, Container: %s",
            self._account_name,
            self._container_name,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._service_client.close()

    def __enter__(self) -> "AzureBlobStorageClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def normalize(self, path: str) -> str:
        return normalize_key(path, self._container_name, AddressingStyle.PATH)

    def _object_for(self, key: str, last_modified=None) -> StorageObject:
        return StorageObject.create(
            path_for_key(key, self._container_name, AddressingStyle.PATH),
            owner=self,
            last_modified=last_modified,
            name=object_name(key),
        )

    def store(self, path: str, content: Content) -> StorageObject:
        ensure_open(self)
        key = self.normalize(path)
        if not key:
            raise StorageError("Cannot store an object without a key", key=key)
        data = read_content(content)
        blob_client = self._container_client.get_blob_client(key)
        try:
            self._retry.call(
                lambda: blob_client.upload_blob(
                    data,
                    overwrite=True,
                    content_settings=ContentSettings(content_type=guess_content_type(key, data)),
                ),
                f"upload_blob {key}",
            )
        except Exception as e:
            raise self._translate_error(e, key) from e
        log.debug("Stored %d bytes at %s/%s", len(data), self._container_name, key)
        return self._object_for(key, utcnow())

    def retrieve(self, path: str) -> BinaryIO:
        ensure_open(self)
        key = self.normalize(path)
        blob_client = self._container_client.get_blob_client(key)
        try:
            data = self._retry.call(
                lambda: blob_client.download_blob().readall(),
                f"download_blob {key}",
            )
        except Exception as e:
            raise self._translate_error(e, key) from e
        return io.BytesIO(data)

    def retrieve_to_temporary_file(self, path: str) -> IO[bytes]:
        return retrieve_to_temporary_file(self, path, prefix="azure-")

    def delete(self, path: str) -> None:
        ensure_open(self)
        key = self.normalize(path)
        blob_client = self._container_client.get_blob_client(key)
        try:
            self._retry.call(blob_client.delete_blob, f"delete_blob {key}")
        except Exception as e:
            translated = self._translate_error(e, key)
            if isinstance(translated, StorageNotFoundError):
                return
            raise translated from e

    def delete_many(self, paths: Iterable[str]) -> None:
        ensure_open(self)
        keys = [self.normalize(path) for path in paths]
        for start in range(0, len(keys), _DELETE_BATCH_SIZE):
            batch = keys[start:start + _DELETE_BATCH_SIZE]
            try:
                responses = self._retry.call(
                    lambda: list(
                        self._container_client.delete_blobs(*batch, raise_on_any_failure=False)
                    ),
                    f"delete_blobs ({len(batch)} keys)",
                )
            except Exception as e:
                raise self._translate_error(e) from e

            failed = [
                (key, response.status_code)
                for key, response in zip(batch, responses)
                if response.status_code not in (200, 202, 404)
            ]
            if failed:
                key, status = failed[0]
                raise StorageError(
                    f"Failed to delete {len(failed)} of {len(batch)} blobs (first: HTTP {status})",
                    key=key,
                )
            log.debug("Deleted %d blobs from %s", len(batch), self._container_name)

    def _list_page(self, prefix: str, continuation_token: str | None):
        pager = self._container_client.list_blobs(
            name_starts_with=prefix or None,
            results_per_page=self._config.page_size,
        ).by_page(continuation_token=continuation_token)
        page = next(pager, None)
        blobs = list(page) if page is not None else []
        return blobs, pager.continuation_token

    def list_objects(self, prefix: str = "") -> list[StorageObject]:
        ensure_open(self)
        prefix = normalize_prefix(prefix, self._container_name, AddressingStyle.PATH)
        objects: list[StorageObject] = []
        token = None

        while True:
            try:
                blobs, token = self._retry.call(
                    lambda: self._list_page(prefix, token),
                    f"list_blobs {prefix!r}",
                )
            except Exception as e:
                error = self._translate_error(e, prefix)
                error.partial_results = objects
                raise error from e

            for blob in blobs:
                objects.append(self._object_for(blob.name, blob.last_modified))
            if not token:
                break

        return objects

    def get_endpoint(self) -> str:
        return f"{self._service_client.url.rstrip('/')}/{self._container_name}"

    def get_url(self, path: str) -> str:
        key = self.normalize(path)
        url = f"{self.get_endpoint()}/{quote(key)}"
        if self._config.public_read:
            return url

        if not self._account_key:
            raise StoragePermissionError(
                "Account key is required to generate presigned URLs",
                key=key,
            )
        try:
            sas_token = generate_blob_sas(
                account_name=self._account_name,
                container_name=self._container_name,
                blob_name=key,
                account_key=self._account_key,
                permission=BlobSasPermissions(read=True),
                expiry=datetime.now(timezone.utc) + timedelta(seconds=PRESIGNED_URL_EXPIRY_SECONDS),
            )
        except Exception as e:
            raise self._translate_error(e, key) from e
        return f"{url}?{sas_token}"

    def copy(self, from_path: str, to_path: str) -> None:
        """Server-side copy; within one account the copy completes synchronously."""
        ensure_open(self)
        from_key = self.normalize(from_path)
        to_key = self.normalize(to_path)
        source_url = self._container_client.get_blob_client(from_key).url
        target = self._container_client.get_blob_client(to_key)
        try:
            self._retry.call(
                lambda: target.start_copy_from_url(source_url),
                f"copy {from_key} -> {to_key}",
            )
        except Exception as e:
            raise self._translate_error(e, from_key) from e

    @staticmethod
    def _extract_key_from_connection_string(connection_string: str) -> str | None:
        for part in connection_string.split(";"):
            if part.strip().lower().startswith("accountkey="):
                return part.split("=", 1)[1]
        return None

    def _translate_error(self, error: Exception, key: str | None = None) -> StorageError:
        if isinstance(error, ResourceNotFoundError):
            return StorageNotFoundError(str(error), key=key, cause=error)
        if isinstance(error, ClientAuthenticationError) or (
            isinstance(error, HttpResponseError) and error.status_code == 403
        ):
            return StoragePermissionError(str(error), key=key, cause=error)
        if isinstance(error, ConnectionError) or is_transient_error(error):
            return StorageConnectionError(str(error), key=key, cause=error)
        return StorageError(str(error), key=key, cause=error)
