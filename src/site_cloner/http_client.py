from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator
from urllib.parse import urlparse

import requests
from requests import exceptions as req_exc

from .errors import FetchError

TRANSIENT_HTTP_STATUSES = {429, 500, 502, 503, 504}


def _retry_after_seconds(headers: dict[str, str]) -> float | None:
    retry_after = headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        return float(retry_after)
    except ValueError:
        return None


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    headers: dict[str, str]
    fetched_at: float
    body: bytes

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")


class HttpClient:
    """Thin wrapper over a ``requests.Session``.

    Network failures raise :class:`FetchError`; HTTP error statuses are
    returned so callers can decide what to do with them.
    """

    def __init__(
        self,
        session: requests.Session,
        *,
        timeout_s: float = 180,
        verify_ssl: bool = True,
        user_agent: str | None = None,
        crawl_delay_s: float = 0.0,
        max_retries: int = 0,
        backoff_base_s: float = 1.0,
    ) -> None:
        self._session = session
        self._session.verify = verify_ssl
        if user_agent:
            self._session.headers["User-Agent"] = user_agent
        self._timeout_s = timeout_s
        self._crawl_delay_s = crawl_delay_s
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        self._last_fetch_at_by_host: dict[str, float] = {}

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    def _pacing_sleep(self, host: str) -> None:
        if self._crawl_delay_s <= 0:
            return
        last = self._last_fetch_at_by_host.get(host)
        if last is None:
            return
        elapsed = time.time() - last
        if elapsed < self._crawl_delay_s:
            time.sleep(self._crawl_delay_s - elapsed)

    def _send(
        self,
        url: str,
        *,
        timeout_s: float | None,
        stream: bool,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        host = (urlparse(url).hostname or "").lower()
        timeout = timeout_s if timeout_s is not None else self._timeout_s
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            self._pacing_sleep(host)
            try:
                resp = self._session.get(
                    url, timeout=timeout, headers=headers, stream=stream
                )
            except req_exc.RequestException as e:
                last_error = e
                if attempt >= self._max_retries:
                    break
                time.sleep(self._backoff_base_s * (2**attempt))
                continue
            finally:
                self._last_fetch_at_by_host[host] = time.time()

            if (
                resp.status_code in TRANSIENT_HTTP_STATUSES
                and attempt < self._max_retries
            ):
                retry_after = _retry_after_seconds(dict(resp.headers))
                wait_s = (
                    retry_after
                    if retry_after is not None
                    else self._backoff_base_s * (2**attempt)
                )
                resp.close()
                time.sleep(wait_s)
                continue

            return resp

        raise FetchError(url, last_error)

    def get(
        self,
        url: str,
        *,
        timeout_s: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        resp = self._send(url, timeout_s=timeout_s, stream=False, headers=headers)
        try:
            body = resp.content
        except req_exc.RequestException as e:
            raise FetchError(url, e) from e
        return FetchResult(
            url=url,
            final_url=str(resp.url),
            status_code=int(resp.status_code),
            headers={k: str(v) for k, v in resp.headers.items()},
            fetched_at=time.time(),
            body=body,
        )

    @contextmanager
    def stream(
        self, url: str, *, timeout_s: float | None = None
    ) -> Iterator[requests.Response]:
        """Open a streamed response; the body is read by the caller."""

        resp = self._send(url, timeout_s=timeout_s, stream=True)
        try:
            yield resp
        finally:
            resp.close()
