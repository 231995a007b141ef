"""Mapping from URLs to files under the mirror root.

Every on-disk location is derived from :func:`mirror_relative_path`, so the
path a page is saved to and the link the rewriter emits for it can never
disagree.
"""

from __future__ import annotations

import posixpath
import re
from pathlib import Path
from urllib.parse import urlparse

from .urls import get_relative_path

MAX_RELATIVE_PATH_LEN = 200
TRUNCATION_MARKER = "_truncated_"
QUERY_SUFFIX_MAX_LEN = 32

_FULL_URL = re.compile(r"^https?://", re.IGNORECASE)
_ILLEGAL_CHARS = re.compile(r'[:*?"<>|]')
_QUERY_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _flatten_external_url(url: str) -> str:
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    host = parsed.netloc.rsplit("@", 1)[-1] or "external"
    path = parsed.path or "/"
    if path.endswith("/"):
        path += "index.html"
    if parsed.query:
        suffix = "_" + _QUERY_UNSAFE.sub("_", parsed.query)[:QUERY_SUFFIX_MAX_LEN]
        stem, ext = posixpath.splitext(path)
        path = f"{stem}{suffix}{ext}"
    return host + path


def _truncate(rel: str) -> str:
    if len(rel) <= MAX_RELATIVE_PATH_LEN:
        return rel
    keep = MAX_RELATIVE_PATH_LEN - len(TRUNCATION_MARKER)
    head = keep // 2
    tail = keep - head
    return rel[:head] + TRUNCATION_MARKER + rel[-tail:]


def sanitize_relative_path(relative_path_or_url: str) -> str:
    """Make a relative path (or a full external URL) safe to write under the root.

    Returns a POSIX-style string with no leading slash. ``..`` segments are
    removed rather than resolved so the result never leaves the root.
    """

    rel = relative_path_or_url or ""
    if _FULL_URL.match(rel):
        rel = _flatten_external_url(rel)

    rel = rel.replace("\\", "/")
    segments = [s for s in rel.split("/") if s not in ("", ".", "..")]
    rel = "/".join(segments)
    rel = _ILLEGAL_CHARS.sub("_", rel)
    return _truncate(rel)


def resolve_output_path(relative_path_or_url: str, output_root: Path) -> Path:
    rel = sanitize_relative_path(relative_path_or_url)
    if not rel:
        return output_root
    return output_root.joinpath(*rel.split("/"))


def _directory_index(rel: str) -> str | None:
    if not rel or rel.endswith("/"):
        return rel + "index.html"
    return None


def apply_page_rule(relative_path: str) -> str:
    """Directory-style paths become ``index.html``; bare names get ``.html``."""

    index = _directory_index(relative_path)
    if index is not None:
        return index
    last = relative_path.rsplit("/", 1)[-1]
    if not posixpath.splitext(last)[1]:
        return relative_path + ".html"
    return relative_path


def mirror_relative_path(url: str, base_url: str, *, page: bool) -> str:
    rel = get_relative_path(url, base_url)
    if page:
        rel = apply_page_rule(rel)
    else:
        rel = _directory_index(rel) or rel
    return sanitize_relative_path(rel)


def output_path_for(url: str, base_url: str, output_root: Path, *, page: bool) -> Path:
    return resolve_output_path(
        mirror_relative_path(url, base_url, page=page), output_root
    )


def depth_prefix(page_relative_path: str) -> str:
    """``../`` repeated once per directory level of a page's own output path."""

    return "../" * page_relative_path.count("/")
