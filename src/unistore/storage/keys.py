"""Normalization of caller-supplied paths into canonical backend keys.

Callers may address an object with a bare key (``folder/file.txt``), an
absolute path (``/folder/file.txt``) or the full URL it is served from
(``https://bucket.s3.amazonaws.com/folder/file.txt``). Every backend turns
those into the same canonical key before talking to its SDK.
"""

import re
from enum import Enum
from urllib.parse import quote, unquote, urlsplit


class AddressingStyle(str, Enum):
    """Where the bucket name lives in an object URL."""

    VIRTUAL_HOSTED = "virtual"  # https://bucket.endpoint/key
    PATH = "path"  # https://endpoint/bucket/key


# Scheme-less input needs a dotted host, otherwise "//folder/file" would be
# read as a protocol-relative URL.
_URL_PATTERN = re.compile(
    r"^(?:https?://[\w-]+(?:\.[\w-]+)*|//[\w-]+(?:\.[\w-]+)+)(?::\d+)?/",
    re.IGNORECASE,
)

# Host used when a key can only be expressed as a URL path.
_PLACEHOLDER_ORIGIN = "http://localhost"


def is_url(path: str) -> bool:
    """Return True if *path* looks like ``[scheme:]//host.domain/...``."""
    return bool(_URL_PATTERN.match(path))


def _strip_leading_slash(path: str) -> str:
    return path[1:] if path.startswith("/") else path


def normalize_key(
    path: str,
    bucket: str | None = None,
    addressing_style: AddressingStyle = AddressingStyle.VIRTUAL_HOSTED,
) -> str:
    """Return the canonical key addressed by *path*.

    For path-style backends a leading ``/bucket`` segment is removed. In a
    URL the first path segment is always the bucket, so ``/bucket`` alone is
    stripped as well; in raw input the segment must be followed by a slash,
    which keeps a key literally equal to the bucket name intact. Exactly one
    leading slash is stripped afterwards. URLs that fail to parse fall back
    to slash stripping.
    """
    if not path:
        return ""

    strip_bucket = bool(bucket) and addressing_style == AddressingStyle.PATH
    bucket_segment = f"/{bucket}"

    if is_url(path):
        try:
            url_path = unquote(urlsplit(path).path)
        except ValueError:
            return _strip_leading_slash(path)
        if strip_bucket:
            if url_path == bucket_segment:
                return ""
            if url_path.startswith(bucket_segment + "/"):
                url_path = url_path[len(bucket_segment):]
        return _strip_leading_slash(url_path)

    if strip_bucket and path.startswith(bucket_segment + "/"):
        path = path[len(bucket_segment):]
    return _strip_leading_slash(path)


def path_for_key(
    key: str,
    bucket: str | None = None,
    addressing_style: AddressingStyle = AddressingStyle.VIRTUAL_HOSTED,
) -> str:
    """Return a path that ``normalize_key`` maps back to *key* unchanged.

    Most keys are their own path. A key starting with a slash gets one more
    slash, since normalization strips one. Keys that would still be misread
    (``/host.tld/...`` looks like a protocol-relative URL, a key may itself
    look like a URL) are wrapped into a URL whose path is the quoted key.
    """
    candidate = "/" + key if key.startswith("/") else key
    if normalize_key(candidate, bucket, addressing_style) == key:
        return candidate

    bucket_segment = f"/{bucket}" if bucket and addressing_style == AddressingStyle.PATH else ""
    return f"{_PLACEHOLDER_ORIGIN}{bucket_segment}/{quote(key)}"


def normalize_prefix(
    prefix: str,
    bucket: str | None = None,
    addressing_style: AddressingStyle = AddressingStyle.VIRTUAL_HOSTED,
) -> str:
    """Normalize a listing prefix; an empty prefix or "/" lists everything."""
    if not prefix or prefix == "/":
        return ""
    return normalize_key(prefix, bucket, addressing_style)
