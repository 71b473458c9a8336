"""
Local filesystem storage backend.

Maps object keys onto files below a base directory. There is no network
involved, so calls are not retried.
"""

import logging
import os
import shutil
import stat
import tempfile
import threading
from datetime import datetime, timezone
from typing import IO, BinaryIO, Iterable
from urllib.parse import quote

from .base import (
    Content,
    StorageObject,
    ensure_open,
    read_content,
    retrieve_to_temporary_file,
)
from .config import FileSystemConfig
from .exceptions import (
    StorageConfigurationError,
    StorageError,
    StorageNotFoundError,
    StoragePermissionError,
)
from .keys import normalize_key, normalize_prefix

log = logging.getLogger(__name__)

_UPLOAD_PREFIX = ".upload-"

_umask_lock = threading.Lock()


def _current_umask() -> int:
    # os.umask can only be read by setting it
    with _umask_lock:
        umask = os.umask(0o022)
        os.umask(umask)
    return umask


def _file_mode(full_path: str) -> int:
    """Mode for a stored file: kept from the file it replaces, else 0o666 minus the umask."""
    try:
        return stat.S_IMODE(os.stat(full_path).st_mode)
    except FileNotFoundError:
        return 0o666 & ~_current_umask()


class FileSystemStorageClient:
    """
    Storage backend rooted at a local directory.

    Directory layout mirrors the keys:
    {base_path}/folder/file.txt  <->  "folder/file.txt"
    """

    def __init__(self, config: FileSystemConfig):
        self._config = config
        self._base_path = os.path.abspath(config.base_path)
        self._closed = False

        try:
            os.makedirs(self._base_path, exist_ok=True)
        except OSError as e:
            log.error("Failed to create base directory '%s': %s", self._base_path, e)
            raise StorageConfigurationError(
                f"Could not create base_path '{self._base_path}': {e}", cause=e
            ) from e
        log.info("FileSystemStorageClient initialized at: %s", self._base_path)

    @property
    def base_path(self) -> str:
        return self._base_path

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> "FileSystemStorageClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def normalize(self, path: str) -> str:
        # Relative to base_path, so extra leading slashes carry no meaning.
        return normalize_key(path).lstrip("/")

    def _full_path(self, key: str) -> str:
        full_path = os.path.normpath(os.path.join(self._base_path, key))
        if full_path != self._base_path and not full_path.startswith(self._base_path + os.sep):
            raise StorageError(f"Key '{key}' resolves outside of {self._base_path}", key=key)
        return full_path

    def _key_for(self, full_path: str) -> str:
        return os.path.relpath(full_path, self._base_path).replace(os.sep, "/")

    def _object_for(self, full_path: str) -> StorageObject:
        stat = os.stat(full_path)
        return StorageObject.create(
            self._key_for(full_path),
            owner=self,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            is_dir=os.path.isdir(full_path),
        )

    def store(self, path: str, content: Content) -> StorageObject:
        ensure_open(self)
        key = self.normalize(path)
        if not key:
            raise StorageError("Cannot store an object without a key", key=key)
        full_path = self._full_path(key)
        data = read_content(content)

        tmp_name = None
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=os.path.dirname(full_path), prefix=_UPLOAD_PREFIX, delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(data)
            os.chmod(tmp_name, _file_mode(full_path))
            os.replace(tmp_name, full_path)
            tmp_name = None
            log.debug("Stored %d bytes at %s", len(data), key)
            return self._object_for(full_path)
        except OSError as e:
            raise self._translate_error(e, key) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def retrieve(self, path: str) -> BinaryIO:
        ensure_open(self)
        key = self.normalize(path)
        try:
            return open(self._full_path(key), "rb")
        except OSError as e:
            raise self._translate_error(e, key) from e

    def retrieve_to_temporary_file(self, path: str) -> IO[bytes]:
        return retrieve_to_temporary_file(self, path, prefix="fs-")

    def delete(self, path: str) -> None:
        ensure_open(self)
        key = self.normalize(path)
        full_path = self._full_path(key)
        if full_path == self._base_path:
            raise StorageError("Refusing to delete the storage root", key=key)
        try:
            if os.path.isdir(full_path):
                os.rmdir(full_path)
            else:
                os.remove(full_path)
            log.debug("Deleted %s", key)
        except FileNotFoundError:
            log.debug("Delete of missing key %s ignored", key)
        except OSError as e:
            raise self._translate_error(e, key) from e

    def delete_many(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.delete(path)

    def list_objects(self, prefix: str = "") -> list[StorageObject]:
        """Walk the deepest directory named by *prefix*, returning files and directories."""
        ensure_open(self)
        prefix = normalize_prefix(prefix).lstrip("/")
        root = self._full_path(prefix.rsplit("/", 1)[0] if "/" in prefix else "")
        if not os.path.isdir(root):
            return []

        objects: list[StorageObject] = []
        for dirpath, dirnames, filenames in os.walk(root):
            for name in dirnames + filenames:
                if name.startswith(_UPLOAD_PREFIX):
                    continue
                full_path = os.path.join(dirpath, name)
                if not self._key_for(full_path).startswith(prefix):
                    continue
                try:
                    objects.append(self._object_for(full_path))
                except FileNotFoundError:
                    continue
        objects.sort(key=lambda obj: obj.path)
        return objects

    def get_endpoint(self) -> str:
        return self._config.public_endpoint or "/"

    def get_url(self, path: str) -> str:
        return f"{self.get_endpoint().rstrip('/')}/{quote(self.normalize(path))}"

    def copy(self, from_path: str, to_path: str) -> None:
        ensure_open(self)
        from_key = self.normalize(from_path)
        to_key = self.normalize(to_path)
        source = self._full_path(from_key)
        target = self._full_path(to_key)
        try:
            if not os.path.isfile(source):
                raise FileNotFoundError(source)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            shutil.copyfile(source, target)
            log.debug("Copied %s to %s", from_key, to_key)
        except OSError as e:
            raise self._translate_error(e, from_key) from e

    def _translate_error(self, error: OSError, key: str | None = None) -> StorageError:
        if isinstance(error, FileNotFoundError):
            return StorageNotFoundError(str(error), key=key, cause=error)
        if isinstance(error, PermissionError):
            return StoragePermissionError(str(error), key=key, cause=error)
        return StorageError(str(error), key=key, cause=error)
