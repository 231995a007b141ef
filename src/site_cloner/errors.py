from __future__ import annotations


class SiteClonerError(Exception):
    pass


class FetchError(SiteClonerError):
    """Network-level failure (connection, timeout, TLS) for a single URL.

    HTTP error statuses are not raised; callers inspect ``status_code``.
    """

    def __init__(self, url: str, cause: Exception | None = None) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"Failed to fetch {url}: {cause}")


class ConfigError(SiteClonerError):
    pass


class HttpStatusError(SiteClonerError):
    def __init__(self, url: str, status_code: int) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"HTTP {status_code} for {url}")
