"""
Immutable configuration records for storage backends.

Each backend is constructed from one of these records. Validation happens
when the record is built, so a misconfigured backend fails at startup with
a StorageConfigurationError rather than on its first request.
"""

from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import StorageConfigurationError
from .keys import AddressingStyle
from .retry import RetryPolicy

_PRIVATE_S3_ACLS = frozenset({"private", "authenticated-read"})

ConfigT = TypeVar("ConfigT", bound="StorageConfig")


class StorageConfig(BaseModel):
    """Shared settings; frozen once validated."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def build(cls: Type[ConfigT], **values: Any) -> ConfigT:
        """Validate *values*, raising StorageConfigurationError on failure."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise StorageConfigurationError(
                f"Invalid {cls.__name__}: {e}", cause=e
            ) from e


class RetrySettings(StorageConfig):
    """Retry behaviour applied to every individual network call."""

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    backoff_base: float = Field(default=0.1, ge=0, description="First backoff delay in seconds")

    def to_policy(self, retry_if=None) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff_base=self.backoff_base,
            retry_if=retry_if,
        )


class FileSystemConfig(StorageConfig):
    """Local directory used as an object store."""

    base_path: str = Field(..., min_length=1, description="Root directory for stored objects")
    public_endpoint: Optional[str] = Field(None, description="URL prefix objects are served under")


class S3Config(StorageConfig):
    """S3-compatible object storage (AWS S3, MinIO, SeaweedFS)."""

    bucket: str = Field(..., min_length=1)
    region: str = Field(default="us-east-1", min_length=1)
    endpoint_url: Optional[str] = Field(None, description="API endpoint for S3-compatible services")
    public_endpoint: Optional[str] = Field(None, description="Host or URL objects are publicly served from")
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    role_arn: Optional[str] = Field(
        None, description="IAM role assumed through STS for every request"
    )
    role_session_name: str = Field(default="unistore", min_length=2, max_length=64)
    addressing_style: AddressingStyle = AddressingStyle.VIRTUAL_HOSTED
    acl: str = Field(default="public-read", description="Canned ACL applied on upload")
    cache_control: Optional[str] = None
    region_endpoints: Dict[str, str] = Field(
        default_factory=dict,
        description="Region name to endpoint URL, for providers without a global region table",
    )
    page_size: int = Field(default=1000, ge=1, le=1000)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @model_validator(mode="after")
    def _check_credentials_and_region(self) -> "S3Config":
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ValueError("access_key_id and secret_access_key must be set together")
        if self.region_endpoints and not self.endpoint_url and self.region not in self.region_endpoints:
            known = ", ".join(sorted(self.region_endpoints))
            raise ValueError(f"Unknown region {self.region!r}; expected one of: {known}")
        return self

    @property
    def resolved_endpoint_url(self) -> Optional[str]:
        if self.endpoint_url:
            return self.endpoint_url
        return self.region_endpoints.get(self.region)

    @property
    def is_private(self) -> bool:
        return self.acl in _PRIVATE_S3_ACLS


class GcsConfig(StorageConfig):
    """Google Cloud Storage bucket."""

    bucket: str = Field(..., min_length=1)
    project: Optional[str] = None
    credentials_path: Optional[str] = None
    endpoint: str = Field(default="https://storage.googleapis.com")
    public_read: bool = Field(default=False, description="Serve direct URLs instead of signed ones")
    page_size: int = Field(default=1000, ge=1)
    retry: RetrySettings = Field(default_factory=RetrySettings)


class AzureConfig(StorageConfig):
    """Azure Blob Storage container."""

    container: str = Field(..., min_length=1)
    connection_string: Optional[str] = None
    account_name: Optional[str] = None
    account_key: Optional[str] = None
    public_read: bool = Field(default=False, description="Serve direct URLs instead of SAS URLs")
    page_size: int = Field(default=1000, ge=1, le=5000)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @model_validator(mode="after")
    def _check_credentials(self) -> "AzureConfig":
        if not self.connection_string and not (self.account_name and self.account_key):
            raise ValueError(
                "Azure Blob Storage requires either connection_string or account_name + account_key"
            )
        return self
