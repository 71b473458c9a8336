"""Google Cloud Storage client."""

import io
import logging
from datetime import timedelta
from typing import IO, BinaryIO, Iterable
from urllib.parse import quote

from google.api_core.exceptions import Forbidden, NotFound, Unauthorized
from google.api_core.retry import if_transient_error
from google.auth.exceptions import DefaultCredentialsError, TransportError
from google.cloud import storage as gcs
from google.oauth2 import service_account

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
from .config import GcsConfig
from .exceptions import (
    StorageConfigurationError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)
from .keys import AddressingStyle, normalize_key, normalize_prefix, path_for_key

log = logging.getLogger(__name__)

_DELETE_BATCH_SIZE = 100


class GcsStorageClient:
    """Google Cloud Storage client. Object URLs are always path-style."""

    def __init__(self, config: GcsConfig):
        self._config = config
        self._bucket_name = config.bucket
        self._retry = config.retry.to_policy(retry_if=if_transient_error)
        self._credentials = None
        self._closed = False

        kwargs: dict = {}
        if config.project:
            kwargs["project"] = config.project
        try:
            if config.credentials_path:
                self._credentials = service_account.Credentials.from_service_account_file(
                    config.credentials_path
                )
                kwargs["credentials"] = self._credentials
            self._gcs_client = gcs.Client(**kwargs)
        except (DefaultCredentialsError, OSError, ValueError) as e:
            raise StorageConfigurationError(
                f"Failed to create GCS client for bucket '{self._bucket_name}': {e}", cause=e
            ) from e

        self._bucket = self._gcs_client.bucket(self._bucket_name)
        log.info("GcsStorageClient initialized. Bucket: %s", self._bucket_name)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._gcs_client.close()

    def __enter__(self) -> "GcsStorageClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def normalize(self, path: str) -> str:
        return normalize_key(path, self._bucket_name, AddressingStyle.PATH)

    def _object_for(self, key: str, last_modified=None) -> StorageObject:
        return StorageObject.create(
            path_for_key(key, self._bucket_name, AddressingStyle.PATH),
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
        blob = self._bucket.blob(key)
        try:
            self._retry.call(
                lambda: blob.upload_from_string(data, content_type=guess_content_type(key, data)),
                f"upload {key}",
            )
        except Exception as e:
            raise self._translate_error(e, key) from e
        log.debug("Stored %d bytes at gs://%s/%s", len(data), self._bucket_name, key)
        return self._object_for(key, utcnow())

    def retrieve(self, path: str) -> BinaryIO:
        ensure_open(self)
        key = self.normalize(path)
        blob = self._bucket.blob(key)
        try:
            data = self._retry.call(blob.download_as_bytes, f"download {key}")
        except Exception as e:
            raise self._translate_error(e, key) from e
        return io.BytesIO(data)

    def retrieve_to_temporary_file(self, path: str) -> IO[bytes]:
        return retrieve_to_temporary_file(self, path, prefix="gcs-")

    def delete(self, path: str) -> None:
        ensure_open(self)
        key = self.normalize(path)
        blob = self._bucket.blob(key)
        try:
            self._retry.call(blob.delete, f"delete {key}")
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
                # on_error swallows NotFound so a retried batch stays idempotent
                self._retry.call(
                    lambda: self._bucket.delete_blobs(batch, on_error=lambda blob: None),
                    f"delete_blobs ({len(batch)} keys)",
                )
            except Exception as e:
                raise self._translate_error(e) from e
            log.debug("Deleted %d objects from gs://%s", len(batch), self._bucket_name)

    def _list_page(self, prefix: str, page_token: str | None):
        iterator = self._gcs_client.list_blobs(
            self._bucket_name,
            prefix=prefix or None,
            page_size=self._config.page_size,
            page_token=page_token,
        )
        page = next(iterator.pages, None)
        blobs = list(page) if page is not None else []
        return blobs, iterator.next_page_token

    def list_objects(self, prefix: str = "") -> list[StorageObject]:
        ensure_open(self)
        prefix = normalize_prefix(prefix, self._bucket_name, AddressingStyle.PATH)
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
                objects.append(self._object_for(blob.name, blob.updated or blob.time_created))
            if not token:
                break

        return objects

    def get_endpoint(self) -> str:
        return f"{self._config.endpoint.rstrip('/')}/{self._bucket_name}"

    def get_url(self, path: str) -> str:
        key = self.normalize(path)
        if self._config.public_read:
            return f"{self.get_endpoint()}/{quote(key)}"

        ensure_open(self)
        try:
            return self._bucket.blob(key).generate_signed_url(
                version="v4",
                expiration=timedelta(seconds=PRESIGNED_URL_EXPIRY_SECONDS),
                method="GET",
                credentials=self._credentials,
            )
        except Exception as e:
            raise self._translate_error(e, key) from e

    def copy(self, from_path: str, to_path: str) -> None:
        ensure_open(self)
        from_key = self.normalize(from_path)
        to_key = self.normalize(to_path)
        source = self._bucket.blob(from_key)
        try:
            self._retry.call(
                lambda: self._bucket.copy_blob(source, self._bucket, new_name=to_key),
                f"copy {from_key} -> {to_key}",
            )
        except Exception as e:
            raise self._translate_error(e, from_key) from e

    def _translate_error(self, error: Exception, key: str | None = None) -> StorageError:
        if isinstance(error, NotFound):
            return StorageNotFoundError(str(error), key=key, cause=error)
        if isinstance(error, (Forbidden, Unauthorized)):
            return StoragePermissionError(str(error), key=key, cause=error)
        if isinstance(error, ValueError) and "credentials" in str(error).lower():
            return StoragePermissionError(str(error), key=key, cause=error)
        if isinstance(error, (ConnectionError, TransportError)) or if_transient_error(error):
            return StorageConnectionError(str(error), key=key, cause=error)
        return StorageError(str(error), key=key, cause=error)
