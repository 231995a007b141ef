from __future__ import annotations

from enum import Enum


class ContentKind(str, Enum):
    PAGE = "page"
    ASSET = "asset"


def media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def looks_like_html(data: bytes) -> bool:
    head = data[:2048].lstrip().lower()
    return head.startswith(b"<") and (
        b"<html" in head or b"<!doctype html" in head or b"<head" in head
    )


def classify(content_type: str | None, *, head: bytes = b"") -> ContentKind:
    """Pages are ``text/html`` responses; everything else is an asset.

    A response without any Content-Type is sniffed from its first bytes.
    """

    mt = media_type(content_type)
    if mt == "text/html":
        return ContentKind.PAGE
    if not mt and head and looks_like_html(head):
        return ContentKind.PAGE
    return ContentKind.ASSET


def decode_html(body: bytes, content_type: str | None = None) -> str:
    charset = "utf-8"
    for part in (content_type or "").split(";")[1:]:
        key, _, value = part.strip().partition("=")
        if key.lower() == "charset" and value:
            charset = value.strip("\"' ")
    try:
        return body.decode(charset, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")
