from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import ParseResult, urlparse, urlunparse

_ABSOLUTE_PREFIX = re.compile(
    r"^(https?://|mailto:|tel:|ftp:|#|javascript:|data:)", re.IGNORECASE
)
_MULTI_SLASH = re.compile(r"/+")
_QUERY_OR_FRAGMENT = re.compile(r"[?#]")


def _safe_parse(raw_url: str) -> ParseResult:
    try:
        return urlparse(raw_url)
    except ValueError:
        return urlparse("")


def normalize_url(raw_url: str) -> str:
    """Normalize a URL for de-duplication.

    - Lowercases scheme + hostname.
    - Strips fragments.
    - Gives an empty path on a host-only URL a single "/".
    """

    parsed = _safe_parse(raw_url)
    netloc = (parsed.netloc or "").lower()
    parsed = parsed._replace(
        scheme=(parsed.scheme or "").lower(),
        netloc=netloc,
        path=parsed.path or ("/" if netloc else ""),
        fragment="",
    )
    return urlunparse(parsed)


def is_absolute(url: str) -> bool:
    return _ABSOLUTE_PREFIX.match(url or "") is not None


def resolve_path(path: str) -> str:
    """Collapse ``.`` and ``..`` segments; never climbs above ``/``."""

    out: list[str] = []
    for segment in _MULTI_SLASH.sub("/", path).split("/"):
        if segment == "..":
            if out:
                out.pop()
        elif segment and segment != ".":
            out.append(segment)
    return "/" + "/".join(out)


def make_absolute(url: str, base_url: str) -> str:
    if is_absolute(url):
        return url

    base = _safe_parse(base_url)
    scheme = base.scheme or "http"
    host = base.netloc

    if url.startswith("//"):
        return f"{scheme}:{url}"
    if url.startswith("/"):
        return f"{scheme}://{host}{url}"

    # Keep the query/fragment of the reference out of segment collapsing.
    m = _QUERY_OR_FRAGMENT.search(url)
    path_part, tail = (url[: m.start()], url[m.start() :]) if m else (url, "")

    base_path = base.path or "/"
    base_dir = base_path[: base_path.rfind("/") + 1] or "/"
    resolved = resolve_path(base_dir + path_part)
    if path_part.endswith("/") and resolved != "/":
        resolved += "/"
    if not path_part and base_dir != "/":
        resolved = base_dir
    return f"{scheme}://{host}{resolved}{tail}"


def _host(url: str) -> str:
    # urlparse().hostname lowercases; host comparison here is exact.
    netloc = _safe_parse(url).netloc
    netloc = netloc.rsplit("@", 1)[-1]
    return netloc.split(":", 1)[0]


def is_same_domain(url: str, base_url: str) -> bool:
    if not is_absolute(url):
        return True
    return _host(url) == _host(base_url)


def get_relative_path(url: str, base_url: str) -> str:
    """Path of ``url`` relative to the mirror root derived from ``base_url``.

    Cross-host URLs are returned unchanged; callers must detect that case.
    """

    if _host(url) != _host(base_url):
        return url

    url_path = _safe_parse(url).path or "/"
    base_path = _safe_parse(base_url).path or "/"

    if base_path == "/":
        return url_path.lstrip("/")

    prefix = base_path if base_path.endswith("/") else base_path + "/"
    if url_path.startswith(prefix):
        return url_path[len(prefix) :]
    if url_path == base_path.rstrip("/"):
        return ""
    return url_path.lstrip("/")


def is_excluded(url: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    return any(p.search(url) for p in patterns)


def url_extension(url: str) -> str:
    """Lowercased extension of the URL path's last segment, without the dot."""

    path = _safe_parse(url).path
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return ""
    return last.rsplit(".", 1)[-1].lower()
