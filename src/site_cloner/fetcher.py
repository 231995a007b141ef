from __future__ import annotations

import logging
from pathlib import Path

import requests
from requests import exceptions as req_exc

from .config import DOCUMENT_EXTENSIONS, LARGE_FILE_EXTENSIONS, SizePolicy
from .errors import FetchError
from .http_client import HttpClient
from .manifest import ManifestWriter, relpath_posix
from .paths import output_path_for
from .storage import ensure_parent_dir, remove_partial, write_bytes
from .urls import is_same_domain, normalize_url, url_extension

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def timeout_for(url: str, base_timeout_s: float) -> float:
    if url_extension(url) in DOCUMENT_EXTENSIONS:
        return base_timeout_s * 2
    return base_timeout_s


def is_large_file(url: str) -> bool:
    return url_extension(url) in LARGE_FILE_EXTENSIONS


class AssetFetcher:
    """Downloads assets into the mirror under a byte ceiling.

    ``fetch`` returns the number of bytes written; 0 means the asset was
    skipped, rejected or failed, which is never fatal to the crawl.
    """

    def __init__(
        self,
        http: HttpClient,
        *,
        base_url: str,
        out_dir: Path,
        size_policy: SizePolicy,
        download_external_assets: bool = False,
        manifest: ManifestWriter | None = None,
    ) -> None:
        self.http = http
        self.base_url = base_url
        self.out_dir = out_dir
        self.size_policy = size_policy
        self.download_external_assets = download_external_assets
        self.manifest = manifest
        self._downloaded: set[str] = set()
        self._oversized: set[str] = set()

    def has_fetched(self, url: str) -> bool:
        return normalize_url(url) in self._downloaded

    def in_scope(self, url: str) -> bool:
        return self.download_external_assets or is_same_domain(url, self.base_url)

    def fetch(self, url: str) -> int:
        key = normalize_url(url)
        if key in self._downloaded or key in self._oversized:
            return 0
        if not self.in_scope(url):
            logger.debug("Skipping external asset: %s", url)
            return 0

        logger.info("Downloading asset: %s", url)
        try:
            with self.http.stream(
                url, timeout_s=timeout_for(url, self.http.timeout_s)
            ) as resp:
                if resp.status_code >= 400:
                    logger.warning("HTTP %s for asset %s", resp.status_code, url)
                    self._record("error", url, status_code=resp.status_code)
                    return 0
                return self.store(url, resp)
        except (FetchError, req_exc.RequestException, OSError) as e:
            logger.error("Error downloading asset %s: %s", url, e)
            self._record("error", url, error=str(e))
            return 0

    def store(self, url: str, resp: requests.Response) -> int:
        """Persist an already-open response for ``url``.

        Raises ``requests.RequestException`` or ``OSError`` on failure; a
        streamed download that fails midway leaves no file behind.
        """

        key = normalize_url(url)
        limit = self.size_policy.limit_for(url)
        dest = output_path_for(url, self.base_url, self.out_dir, page=False)

        if is_large_file(url):
            written = self._stream_to_file(url, resp, dest, limit)
        else:
            written = self._buffer_to_file(url, resp, dest, limit)

        if written > 0:
            self._downloaded.add(key)
            logger.info("Saved asset: %s (%d bytes)", dest, written)
            self._record(
                "asset",
                url,
                bytes=written,
                path=relpath_posix(dest, self.out_dir),
            )
        elif key in self._oversized:
            self._record("skipped", url, reason="oversize", limit=limit)
        return written

    def _stream_to_file(
        self, url: str, resp: requests.Response, dest: Path, limit: int
    ) -> int:
        ensure_parent_dir(dest)
        written = 0
        try:
            with dest.open("wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    written += len(chunk)
                    if written > limit:
                        break
                    f.write(chunk)
        except (req_exc.RequestException, OSError):
            remove_partial(dest)
            raise

        if written > limit:
            remove_partial(dest)
            self._oversized.add(normalize_url(url))
            logger.warning(
                "Skipping %s: exceeded size limit of %d bytes while streaming",
                url,
                limit,
            )
            return 0
        return written

    def _buffer_to_file(
        self, url: str, resp: requests.Response, dest: Path, limit: int
    ) -> int:
        body = resp.content
        if len(body) > limit:
            self._oversized.add(normalize_url(url))
            logger.warning(
                "Skipping %s: %d bytes exceeds size limit of %d bytes",
                url,
                len(body),
                limit,
            )
            return 0
        if not body:
            logger.warning("Empty response for asset %s", url)
            return 0
        return write_bytes(dest, body)

    def _record(self, kind: str, url: str, **fields: object) -> None:
        if self.manifest is not None:
            self.manifest.append(kind, url=url, **fields)
