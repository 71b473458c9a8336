"""Unit tests for the object descriptor and shared backend helpers."""

import copy
import dataclasses
import gc
import io
import os
from datetime import datetime, timezone

import pytest

from unistore.storage.base import (
    DEFAULT_CONTENT_TYPE,
    ObjectStorageClient,
    StorageObject,
    guess_content_type,
    object_name,
    read_content,
    retrieve_to_temporary_file,
    sniff_content_type,
)
from unistore.storage.config import FileSystemConfig
from unistore.storage.exceptions import StorageConfigurationError, StorageError
from unistore.storage.filesystem_client import FileSystemStorageClient


class InMemoryBackend:
    """Minimal backend used to exercise StorageObject dispatch."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.closed = False

    def normalize(self, path):
        return path.lstrip("/")

    def retrieve(self, path):
        return io.BytesIO(self.objects[self.normalize(path)])

    def retrieve_to_temporary_file(self, path):
        return retrieve_to_temporary_file(self, path, prefix="mem-")


class TestStorageObject:
    def test_name_is_last_segment(self):
        obj = StorageObject.create("reports/2024/q1.csv")
        assert obj.path == "reports/2024/q1.csv"
        assert obj.name == "q1.csv"

    def test_directory_name_ignores_trailing_slash(self):
        assert object_name("reports/2024/") == "2024"

    def test_equality_ignores_owner(self):
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        a = StorageObject.create("a.txt", owner=InMemoryBackend(), last_modified=when)
        b = StorageObject.create("a.txt", owner=InMemoryBackend(), last_modified=when)
        assert a == b

    def test_repr_hides_owner(self):
        assert "_owner_ref" not in repr(StorageObject.create("a.txt", owner=InMemoryBackend()))

    def test_retrieve_dispatches_to_owner(self):
        backend = InMemoryBackend()
        backend.objects["a.txt"] = b"hello"
        obj = StorageObject.create("a.txt", owner=backend)

        assert obj.owner is backend
        assert obj.retrieve().read() == b"hello"

    def test_copies_keep_owner(self):
        backend = InMemoryBackend()
        backend.objects["a.txt"] = b"hello"
        obj = StorageObject.create("a.txt", owner=backend)

        assert copy.copy(obj).retrieve().read() == b"hello"
        moved = dataclasses.replace(obj, path="a.txt", name="a.txt")
        assert moved.owner is backend

    def test_does_not_keep_owner_alive(self):
        backend = InMemoryBackend()
        obj = StorageObject.create("a.txt", owner=backend)

        del backend
        gc.collect()

        assert obj.owner is None
        with pytest.raises(StorageConfigurationError, match="no longer available"):
            obj.retrieve()

    def test_closed_owner_is_rejected(self):
        backend = InMemoryBackend()
        obj = StorageObject.create("a.txt", owner=backend)
        backend.closed = True

        with pytest.raises(StorageConfigurationError) as exc_info:
            obj.retrieve()
        assert exc_info.value.key == "a.txt"

    def test_without_owner(self):
        with pytest.raises(StorageConfigurationError):
            StorageObject.create("a.txt").retrieve()

    def test_configuration_error_is_storage_and_value_error(self):
        error = StorageConfigurationError("bad")
        assert isinstance(error, StorageError)
        assert isinstance(error, ValueError)


class TestReadContent:
    def test_bytes_like(self):
        assert read_content(b"abc") == b"abc"
        assert read_content(bytearray(b"abc")) == b"abc"
        assert read_content(memoryview(b"abc")) == b"abc"

    def test_seekable_stream_is_rewound(self):
        stream = io.BytesIO(b"hello world")
        stream.read(6)
        assert read_content(stream) == b"hello world"

    def test_text_stream_rejected(self):
        with pytest.raises(TypeError, match="binary mode"):
            read_content(io.StringIO("text"))

    def test_unsupported_type_rejected(self):
        with pytest.raises(TypeError, match="Unsupported content type"):
            read_content("plain string")


class TestGuessContentType:
    @pytest.mark.parametrize(
        ("key", "expected"),
        [("a.txt", "text/plain"), ("dir/b.png", "image/png"), ("noext", DEFAULT_CONTENT_TYPE)],
    )
    def test_guess(self, key, expected):
        assert guess_content_type(key) == expected

    def test_extension_wins_over_content(self):
        assert guess_content_type("a.txt", b"%PDF-1.7") == "text/plain"

    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            (b"%PDF-1.7\n", "application/pdf"),
            (b"\x89PNG\r\n\x1a\n\x00\x00", "image/png"),
            (b"\n  <!DOCTYPE html><html></html>", "text/html; charset=utf-8"),
            (b"hello world\n", "text/plain; charset=utf-8"),
            (b"\x00\x01\x02\x03", DEFAULT_CONTENT_TYPE),
        ],
    )
    def test_content_sniffed_without_extension(self, data, expected):
        assert guess_content_type("uploads/noext", data) == expected


class TestSniffContentType:
    def test_webp(self):
        assert sniff_content_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"

    def test_xml(self):
        assert sniff_content_type(b'<?xml version="1.0"?><a/>') == "text/xml; charset=utf-8"

    def test_unknown_binary(self):
        assert sniff_content_type(b"\x00\x00\x00\x18ftyp") is None

    def test_empty(self):
        assert sniff_content_type(b"") is None


class TestRetrieveToTemporaryFile:
    def test_content_is_copied_and_rewound(self):
        backend = InMemoryBackend()
        backend.objects["docs/report.pdf"] = b"%PDF-1.4 data"

        tmp = StorageObject.create("docs/report.pdf", owner=backend).retrieve_to_temporary_file()
        try:
            assert tmp.name.endswith(".pdf")
            assert os.path.basename(tmp.name).startswith("mem-")
            assert tmp.read() == b"%PDF-1.4 data"
        finally:
            tmp.close()
            os.unlink(tmp.name)

    def test_file_survives_close(self):
        backend = InMemoryBackend()
        backend.objects["a.bin"] = b"\x00\x01"

        tmp = retrieve_to_temporary_file(backend, "a.bin")
        tmp.close()
        try:
            assert os.path.exists(tmp.name)
        finally:
            os.unlink(tmp.name)


class TestContract:
    def test_filesystem_backend_satisfies_contract(self, tmp_path):
        client = FileSystemStorageClient(FileSystemConfig(base_path=str(tmp_path)))
        assert isinstance(client, ObjectStorageClient)

    def test_partial_backend_does_not(self):
        assert not isinstance(InMemoryBackend(), ObjectStorageClient)
