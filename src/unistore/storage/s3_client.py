"""S3-compatible storage client (AWS S3, SeaweedFS, MinIO)."""

import logging
from typing import IO, BinaryIO, Iterable
from urllib.parse import quote, urlsplit

import boto3
from botocore.config import Config
from botocore.credentials import RefreshableCredentials
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from botocore.session import get_session

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
from .config import S3Config
from .exceptions import (
    StorageConfigurationError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)
from .keys import AddressingStyle, normalize_key, normalize_prefix, path_for_key

log = logging.getLogger(__name__)

_ERROR_CODE_MAP = {
    "NoSuchKey": StorageNotFoundError,
    "NoSuchBucket": StorageNotFoundError,
    "404": StorageNotFoundError,
    "NotFound": StorageNotFoundError,
    "AccessDenied": StoragePermissionError,
    "403": StoragePermissionError,
    "InvalidAccessKeyId": StoragePermissionError,
    "SignatureDoesNotMatch": StoragePermissionError,
    "EndpointConnectionError": StorageConnectionError,
}

_TRANSIENT_ERROR_CODES = frozenset(
    {"SlowDown", "RequestTimeout", "InternalError", "ServiceUnavailable", "Throttling"}
)

_CONNECTION_ERRORS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

# DeleteObjects accepts at most this many keys per request.
_DELETE_BATCH_SIZE = 1000


def is_transient_error(error: Exception) -> bool:
    """Network failures, throttling and 5xx responses are worth retrying."""
    if isinstance(error, _CONNECTION_ERRORS):
        return True
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        return code in _TRANSIENT_ERROR_CODES or status >= 500 or status == 429
    return False


class S3StorageClient:
    """S3-compatible object storage client."""

    def __init__(self, config: S3Config):
        self._config = config
        self._bucket = config.bucket
        self._endpoint_url = config.resolved_endpoint_url
        self._retry = config.retry.to_policy(retry_if=is_transient_error)
        self._closed = False

        client_config = Config(
            region_name=config.region,
            signature_version="s3v4",
            s3={"addressing_style": config.addressing_style.value},
            # Retries are handled by our own policy, per call.
            retries={"max_attempts": 1, "mode": "standard"},
        )
        credentials: dict = {}
        if config.access_key_id and config.secret_access_key:
            credentials["aws_access_key_id"] = config.access_key_id
            credentials["aws_secret_access_key"] = config.secret_access_key
        if config.session_token:
            credentials["aws_session_token"] = config.session_token
        kwargs: dict = {"config": client_config}
        if self._endpoint_url:
            kwargs["endpoint_url"] = self._endpoint_url

        try:
            if config.role_arn:
                session = self._assume_role_session(credentials)
                self._client = session.client("s3", **kwargs)
            else:
                self._client = boto3.client("s3", **credentials, **kwargs)
        except (BotoCoreError, ClientError, ValueError) as e:
            raise StorageConfigurationError(
                f"Failed to create S3 client for bucket '{self._bucket}': {e}", cause=e
            ) from e
        log.info(
            "S3StorageClient initialized. Bucket: %s, Region: %s, Endpoint: %s, Addressing: %s",
            self._bucket,
            config.region,
            self._endpoint_url or "(aws)",
            config.addressing_style.value,
        )

    def _assume_role_session(self, credentials: dict) -> boto3.Session:
        """Session using STS AssumeRole credentials, refreshed before they expire."""
        sts = boto3.client("sts", region_name=self._config.region, **credentials)
        role_arn = self._config.role_arn
        session_name = self._config.role_session_name

        def fetch_credentials() -> dict:
            response = self._retry.call(
                lambda: sts.assume_role(RoleArn=role_arn, RoleSessionName=session_name),
                f"assume_role {role_arn}",
            )
            creds = response["Credentials"]
            return {
                "access_key": creds["AccessKeyId"],
                "secret_key": creds["SecretAccessKey"],
                "token": creds["SessionToken"],
                "expiry_time": creds["Expiration"].isoformat(),
            }

        botocore_session = get_session()
        botocore_session._credentials = RefreshableCredentials.create_from_metadata(
            metadata=fetch_credentials(),
            refresh_using=fetch_credentials,
            method="sts-assume-role",
        )
        log.info("Assumed role %s for S3 bucket %s", role_arn, self._bucket)
        return boto3.Session(botocore_session=botocore_session, region_name=self._config.region)

    @property
    def config(self) -> S3Config:
        return self._config

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._client.close()

    def __enter__(self) -> "S3StorageClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def normalize(self, path: str) -> str:
        return normalize_key(path, self._bucket, self._config.addressing_style)

    def _object_for(self, key: str, last_modified=None) -> StorageObject:
        return StorageObject.create(
            path_for_key(key, self._bucket, self._config.addressing_style),
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
        params: dict = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": data,
            "ContentLength": len(data),
            "ContentType": guess_content_type(key, data),
            "ACL": self._config.acl,
        }
        if self._config.cache_control:
            params["CacheControl"] = self._config.cache_control

        try:
            self._retry.call(lambda: self._client.put_object(**params), f"put_object {key}")
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, key) from e
        log.debug("Stored %d bytes at s3://%s/%s", len(data), self._bucket, key)
        return self._object_for(key, utcnow())

    def retrieve(self, path: str) -> BinaryIO:
        ensure_open(self)
        key = self.normalize(path)
        try:
            response = self._retry.call(
                lambda: self._client.get_object(Bucket=self._bucket, Key=key),
                f"get_object {key}",
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, key) from e
        return response["Body"]

    def retrieve_to_temporary_file(self, path: str) -> IO[bytes]:
        return retrieve_to_temporary_file(self, path, prefix="s3-")

    def delete(self, path: str) -> None:
        ensure_open(self)
        key = self.normalize(path)
        try:
            self._retry.call(
                lambda: self._client.delete_object(Bucket=self._bucket, Key=key),
                f"delete_object {key}",
            )
        except (ClientError, BotoCoreError) as e:
            translated = self._translate_error(e, key)
            if isinstance(translated, StorageNotFoundError):
                return
            raise translated from e

    def delete_many(self, paths: Iterable[str]) -> None:
        ensure_open(self)
        keys = [self.normalize(path) for path in paths]
        for start in range(0, len(keys), _DELETE_BATCH_SIZE):
            batch = keys[start:start + _DELETE_BATCH_SIZE]
            request = {"Objects": [{"Key": key} for key in batch], "Quiet": True}
            try:
                response = self._retry.call(
                    lambda: self._client.delete_objects(Bucket=self._bucket, Delete=request),
                    f"delete_objects ({len(batch)} keys)",
                )
            except (ClientError, BotoCoreError) as e:
                raise self._translate_error(e) from e

            errors = [err for err in response.get("Errors", []) if err.get("Code") != "NoSuchKey"]
            if errors:
                first = errors[0]
                raise StorageError(
                    f"Failed to delete {len(errors)} of {len(batch)} objects: "
                    f"{first.get('Code')} {first.get('Message', '')}".rstrip(),
                    key=first.get("Key"),
                )
            log.debug("Deleted %d objects from s3://%s", len(batch), self._bucket)

    def list_objects(self, prefix: str = "") -> list[StorageObject]:
        ensure_open(self)
        prefix = normalize_prefix(prefix, self._bucket, self._config.addressing_style)
        objects: list[StorageObject] = []
        token = None

        while True:
            params: dict = {
                "Bucket": self._bucket,
                "Prefix": prefix,
                "MaxKeys": self._config.page_size,
            }
            if token:
                params["ContinuationToken"] = token
            try:
                page = self._retry.call(
                    lambda: self._client.list_objects_v2(**params),
                    f"list_objects_v2 {prefix!r}",
                )
            except (ClientError, BotoCoreError) as e:
                error = self._translate_error(e, prefix)
                error.partial_results = objects
                raise error from e

            for entry in page.get("Contents", []):
                objects.append(self._object_for(entry["Key"], entry.get("LastModified")))
            token = page.get("NextContinuationToken")
            if not page.get("IsTruncated") or not token:
                break

        return objects

    def get_endpoint(self) -> str:
        if self._config.public_endpoint:
            return self._config.public_endpoint.rstrip("/")

        if self._endpoint_url:
            parts = urlsplit(self._endpoint_url)
            scheme = parts.scheme or "https"
            host = parts.netloc or parts.path
        else:
            scheme = "https"
            host = f"s3.{self._config.region}.amazonaws.com"

        if self._config.addressing_style == AddressingStyle.PATH:
            return f"{scheme}://{host}/{self._bucket}"
        return f"{scheme}://{self._bucket}.{host}"

    def get_url(self, path: str) -> str:
        key = self.normalize(path)
        if self._config.is_private and not self._config.public_endpoint:
            ensure_open(self)
            try:
                return self._client.generate_presigned_url(
                    ClientMethod="get_object",
                    Params={"Bucket": self._bucket, "Key": key},
                    ExpiresIn=PRESIGNED_URL_EXPIRY_SECONDS,
                )
            except (ClientError, BotoCoreError) as e:
                raise self._translate_error(e, key) from e

        endpoint = self.get_endpoint()
        if "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        return f"{endpoint}/{quote(key)}"

    def copy(self, from_path: str, to_path: str) -> None:
        ensure_open(self)
        from_key = self.normalize(from_path)
        to_key = self.normalize(to_path)
        params = {
            "Bucket": self._bucket,
            "Key": to_key,
            "CopySource": {"Bucket": self._bucket, "Key": from_key},
            "ACL": self._config.acl,
        }
        try:
            self._retry.call(
                lambda: self._client.copy_object(**params),
                f"copy_object {from_key} -> {to_key}",
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, from_key) from e

    def _translate_error(self, error: Exception, key: str | None = None) -> StorageError:
        if isinstance(error, ClientError):
            code = error.response.get("Error", {}).get("Code", "")
            exc_cls = _ERROR_CODE_MAP.get(code)
            if exc_cls is None:
                exc_cls = StorageConnectionError if is_transient_error(error) else StorageError
            return exc_cls(str(error), key=key, cause=error)
        if isinstance(error, _CONNECTION_ERRORS):
            return StorageConnectionError(str(error), key=key, cause=error)
        return StorageError(str(error), key=key, cause=error)
