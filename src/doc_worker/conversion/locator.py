"""Locator resolution for job source documents.

Producers address sources two ways: an absolute URL to a public document,
or a file name relative to the object store. Either way the renderer sees the
fixed local name `{uuid}/file.{extension}`, with the extension lowercased.
"""

import posixpath
import re
from dataclasses import dataclass
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from .jobs import ConversionJob

_HTTP_SCHEMES = {"http", "https"}
_DOUBLE_SLASH = re.compile(r"/{2,}")


@dataclass(frozen=True)
class ResolvedSource:
    fetch_locator: str
    save_name: str


def collapse_separators(value: str) -> str:
    return _DOUBLE_SLASH.sub("/", value)


def is_http_url(value: str) -> bool:
    parts = urlsplit(value)
    return parts.scheme.lower() in _HTTP_SCHEMES and bool(parts.netloc)


def _names_a_file(path: str) -> bool:
    if not path or path.endswith("/"):
        return False
    _, ext = posixpath.splitext(path.rsplit("/", 1)[-1])
    return len(ext) > 1


def _encode_once(name: str) -> str:
    if "%" in name:
        return name
    return quote(name, safe="/")


def resolve_source(job: ConversionJob) -> ResolvedSource:
    decoded = unquote(job.encoded_file_name)
    save_name = collapse_separators(f"{job.uuid}/file.{job.normalized_extension}")

    if is_http_url(decoded):
        parts = urlsplit(decoded)
        if _names_a_file(parts.path):
            locator = urlunsplit(parts._replace(path=collapse_separators(parts.path)))
            return ResolvedSource(fetch_locator=locator, save_name=save_name)

    key = f"{job.uuid}/{_encode_once(job.encoded_file_name)}.{job.extension}"
    return ResolvedSource(fetch_locator=collapse_separators(key), save_name=save_name)


def upload_base_name(encoded_file_name: str) -> str:
    """Base name for uploaded artifacts, derived from the original file name.

    URLs contribute their last path segment; plain names their last
    `/`-separated segment. Trailing dots and one extension are stripped.
    """
    decoded = unquote(encoded_file_name)
    if is_http_url(decoded):
        name = urlsplit(decoded).path.rstrip("/").rsplit("/", 1)[-1]
    else:
        name = decoded.replace("\\", "/").rsplit("/", 1)[-1]
    stem, _ = posixpath.splitext(name.rstrip("."))
    return stem.strip() or "file"


def pdf_upload_key(job: ConversionJob) -> str:
    return collapse_separators(f"{job.uuid}/{upload_base_name(job.encoded_file_name)}.pdf")
