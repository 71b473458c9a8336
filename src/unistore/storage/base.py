"""Backend-agnostic storage contract and the object descriptor it returns."""

from __future__ import annotations

import mimetypes
import os
import posixpath
import shutil
import tempfile
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import IO, Any, BinaryIO, Iterable, Optional, Protocol, Union, runtime_checkable

from .exceptions import StorageConfigurationError

Content = Union[bytes, bytearray, memoryview, BinaryIO]

DEFAULT_CONTENT_TYPE = "application/octet-stream"
PRESIGNED_URL_EXPIRY_SECONDS = 3600


@dataclass(frozen=True)
class StorageObject:
    """
    Descriptor for a stored object.

    The object keeps a weak reference to the backend that produced it so
    that ``retrieve`` can be dispatched back to the right place. It never
    keeps the backend alive and never caches content.

    ``path`` is what callers pass back to the backend; it normalizes to the
    stored key. ``name`` is the key's last segment.
    """

    path: str
    name: str
    last_modified: Optional[datetime] = None
    is_dir: bool = False
    _owner_ref: Optional[weakref.ReferenceType] = field(default=None, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        path: str,
        owner: Any = None,
        last_modified: Optional[datetime] = None,
        is_dir: bool = False,
        name: Optional[str] = None,
    ) -> "StorageObject":
        return cls(
            path=path,
            name=name if name is not None else object_name(path),
            last_modified=last_modified,
            is_dir=is_dir,
            _owner_ref=weakref.ref(owner) if owner is not None else None,
        )

    @property
    def owner(self) -> Optional["ObjectStorageClient"]:
        """The producing backend, or None once it has been garbage collected."""
        return self._owner_ref() if self._owner_ref is not None else None

    def _require_owner(self) -> "ObjectStorageClient":
        owner = self.owner
        if owner is None or owner.closed:
            raise StorageConfigurationError(
                f"Storage backend for '{self.path}' is no longer available",
                key=self.path,
            )
        return owner

    def retrieve(self) -> BinaryIO:
        """Fetch this object's content from its backend."""
        return self._require_owner().retrieve(self.path)

    def retrieve_to_temporary_file(self) -> IO[bytes]:
        return self._require_owner().retrieve_to_temporary_file(self.path)


@runtime_checkable
class ObjectStorageClient(Protocol):
    """
    Operations every storage backend provides.

    Every ``path`` argument may be a bare key, a slash-prefixed key or a
    full object URL; backends normalize it with ``normalize`` first.
    Network calls are blocking and individually retried, so nothing here
    is transactional across calls.
    """

    @property
    def closed(self) -> bool: ...

    def normalize(self, path: str) -> str:
        """Return the canonical key for *path*."""
        ...

    def store(self, path: str, content: Content) -> StorageObject:
        """Write *content* to *path*, replacing any existing object."""
        ...

    def retrieve(self, path: str) -> BinaryIO:
        """Return a readable stream. Raises StorageNotFoundError if missing."""
        ...

    def retrieve_to_temporary_file(self, path: str) -> IO[bytes]:
        """Download into a rewound temporary file owned by the caller."""
        ...

    def delete(self, path: str) -> None:
        """Delete a single object. No-op if the key doesn't exist."""
        ...

    def delete_many(self, paths: Iterable[str]) -> None:
        """Best-effort batch delete; may stop part way through."""
        ...

    def list_objects(self, prefix: str = "") -> list[StorageObject]:
        """Return every object whose key starts with *prefix*, across all pages."""
        ...

    def get_url(self, path: str) -> str:
        """Return a URL for fetching the object directly (possibly signed)."""
        ...

    def get_endpoint(self) -> str:
        """Return the base URL objects are served from."""
        ...

    def copy(self, from_path: str, to_path: str) -> None:
        """Server-side copy."""
        ...

    def close(self) -> None: ...


def object_name(path: str) -> str:
    """Last segment of *path*, ignoring a trailing slash."""
    return posixpath.basename(path.rstrip("/"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Leading bytes of common formats, checked when the key has no known extension.
_CONTENT_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"BM", "image/bmp"),
    (b"OggS", "application/ogg"),
    (b"\x00asm", "application/wasm"),
)

# Control bytes that never appear in text.
_BINARY_BYTES = frozenset(
    set(range(0x00, 0x09)) | {0x0B} | set(range(0x0E, 0x1B)) | set(range(0x1C, 0x20))
)


def sniff_content_type(data: bytes) -> Optional[str]:
    """Detect a content type from the first bytes of *data*."""
    for signature, content_type in _CONTENT_SIGNATURES:
        if data.startswith(signature):
            return content_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"

    head = data[:512].lstrip(b"\t\n\x0c\r ").lower()
    if head.startswith((b"<!doctype html", b"<html", b"<head", b"<body")):
        return "text/html; charset=utf-8"
    if head.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    if data and not any(byte in _BINARY_BYTES for byte in data[:512]):
        return "text/plain; charset=utf-8"
    return None


def guess_content_type(key: str, data: Optional[bytes] = None) -> str:
    """Content type from the key's extension, else sniffed from *data*."""
    content_type, _ = mimetypes.guess_type(key)
    if content_type:
        return content_type
    if data:
        return sniff_content_type(data) or DEFAULT_CONTENT_TYPE
    return DEFAULT_CONTENT_TYPE


def read_content(content: Content) -> bytes:
    """
    Return the full payload of *content*.

    Seekable streams are rewound first so a partially consumed file is
    still stored from its beginning. Non-seekable streams are read from
    wherever they currently are.
    """
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    if not hasattr(content, "read"):
        raise TypeError(f"Unsupported content type: {type(content).__name__}")

    seekable = getattr(content, "seekable", None)
    if seekable is not None and seekable():
        content.seek(0)
    data = content.read()
    if isinstance(data, str):
        raise TypeError("Content stream must be opened in binary mode")
    return data


def ensure_open(client: ObjectStorageClient) -> None:
    if client.closed:
        raise StorageConfigurationError(f"{type(client).__name__} has been closed")


def retrieve_to_temporary_file(
    client: ObjectStorageClient, path: str, prefix: str = "oss-"
) -> IO[bytes]:
    """
    Drain ``client.retrieve(path)`` into a new temporary file.

    The file keeps the key's extension, is rewound before being returned
    and is not deleted on close; removing it is up to the caller.
    """
    stream = client.retrieve(path)
    _, ext = posixpath.splitext(client.normalize(path))
    tmp = tempfile.NamedTemporaryFile(prefix=prefix, suffix=ext, delete=False)
    try:
        shutil.copyfileobj(stream, tmp)
        tmp.flush()
        tmp.seek(0)
    except BaseException:
        tmp.close()
        os.unlink(tmp.name)
        raise
    finally:
        close = getattr(stream, "close", None)
        if close is not None:
            close()
    return tmp
