from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from site_cloner.config import MirrorConfig
from site_cloner.http_client import HttpClient


class FakeResponse:
    def __init__(
        self,
        body: bytes = b"",
        *,
        status_code: int = 200,
        content_type: str | None = None,
        headers: dict[str, str] | None = None,
        url: str = "",
        fail_after_chunks: int | None = None,
    ) -> None:
        self._body = body
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        if content_type is not None:
            self.headers["Content-Type"] = content_type
        self.url = url
        self.fail_after_chunks = fail_after_chunks
        self.closed = False

    @property
    def content(self) -> bytes:
        return self._body

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for n, start in enumerate(range(0, len(self._body), chunk_size)):
            if self.fail_after_chunks is not None and n >= self.fail_after_chunks:
                raise requests.exceptions.ChunkedEncodingError("connection reset")
            yield self._body[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for ``requests.Session``; unknown URLs answer 404."""

    def __init__(self, routes: dict[str, object] | None = None) -> None:
        self.routes: dict[str, object] = dict(routes or {})
        self.headers: dict[str, str] = {}
        self.verify = True
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, **kwargs) -> FakeResponse:
        self.calls.append((url, kwargs))
        route = self.routes.get(url)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        if route is None:
            return FakeResponse(b"not found", status_code=404, content_type="text/html", url=url)
        route.url = url
        return route

    def urls_requested(self) -> list[str]:
        return [u for u, _ in self.calls]


def html_page(body: str, *, head: str = "") -> FakeResponse:
    doc = f"<html><head>{head}</head><body>{body}</body></html>"
    return FakeResponse(doc.encode("utf-8"), content_type="text/html; charset=utf-8")


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def make_http():
    def _make(session: FakeSession, **kwargs) -> HttpClient:
        kwargs.setdefault("timeout_s", 10)
        return HttpClient(session, **kwargs)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def make_config(tmp_path: Path):
    def _make(base_url: str = "https://example.com/", **kwargs) -> MirrorConfig:
        kwargs.setdefault("out_dir", tmp_path / "mirror")
        kwargs.setdefault("timeout_s", 10)
        return MirrorConfig(base_url=base_url, **kwargs)

    return _make


@pytest.fixture
def make_page():
    return html_page


@pytest.fixture
def make_response():
    return FakeResponse
