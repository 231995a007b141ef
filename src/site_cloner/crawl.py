from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Callable

import requests
from bs4 import BeautifulSoup
from requests import exceptions as req_exc

from .config import MirrorConfig
from .content import ContentKind, classify, decode_html, media_type
from .errors import HttpStatusError, SiteClonerError
from .fetcher import AssetFetcher, is_large_file, timeout_for
from .http_client import HttpClient
from .manifest import ManifestWriter, relpath_posix, utc_iso
from .paths import output_path_for
from .rewriter import (
    ASSET_SELECTORS,
    LinkRewriter,
    attr_text,
    effective_base_url,
    parse_html,
    serialize,
)
from .robots import RobotsRules, fetch_robots
from .storage import write_bytes, write_text
from .urls import is_excluded, is_same_domain, make_absolute, normalize_url

logger = logging.getLogger(__name__)

_NON_NAVIGABLE = ("#", "javascript:", "mailto:", "tel:", "data:")

# Per-URL failures that are logged and skipped; nothing here ends the run.
_PER_URL_ERRORS = (
    SiteClonerError,
    req_exc.RequestException,
    OSError,
    ValueError,
    RuntimeError,
)


class CrawlStatus(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    COMPLETED = "Completed"
    ABORTED = "Aborted"


@dataclass(frozen=True)
class CrawlTarget:
    url: str
    found_on: str | None = None


@dataclass
class CrawlStats:
    visited: int = 0
    pending: int = 0
    bytes_downloaded: int = 0
    files_written: int = 0
    errors: int = 0
    status: str = CrawlStatus.IDLE.value

    def to_dict(self) -> dict:
        return asdict(self)


ProgressCallback = Callable[[CrawlStats], None]


def _resolve_http_url(href: str, base: str) -> str | None:
    href = href.strip()
    if not href or href.lower().startswith(_NON_NAVIGABLE):
        return None
    abs_url = make_absolute(href, base)
    if not abs_url.lower().startswith(("http://", "https://")):
        return None
    return normalize_url(abs_url)


def extract_links(soup: BeautifulSoup, *, page_url: str) -> list[str]:
    """Anchor targets in document order, absolute and normalized."""

    base = effective_base_url(soup, page_url)
    out: list[str] = []
    for a in soup.select("a[href]"):
        link = _resolve_http_url(attr_text(a.get("href")), base)
        if link is not None:
            out.append(link)
    return out


def extract_asset_urls(soup: BeautifulSoup, *, page_url: str) -> list[str]:
    """Stylesheets, then scripts, then images; first occurrence wins."""

    base = effective_base_url(soup, page_url)
    seen: set[str] = set()
    out: list[str] = []
    for selector, attr, _ in ASSET_SELECTORS:
        for node in soup.select(selector):
            asset = _resolve_http_url(attr_text(node.get(attr)), base)
            if asset is None or asset in seen:
                continue
            seen.add(asset)
            out.append(asset)
    return out


class Crawler:
    """Breadth-first mirror of one site.

    Owns the visited set, the pending queue and the statistics. Each URL is
    dequeued and attempted at most once; a failing URL is logged and the
    crawl moves on.
    """

    def __init__(
        self,
        *,
        http: HttpClient,
        config: MirrorConfig,
        manifest: ManifestWriter | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.http = http
        self.cfg = config
        self.base_url = normalize_url(config.base_url)
        self.out_dir = config.out_dir
        self.manifest = manifest
        self.on_progress = on_progress

        self.fetcher = AssetFetcher(
            http,
            base_url=self.base_url,
            out_dir=self.out_dir,
            size_policy=config.size_policy,
            download_external_assets=config.download_external_assets,
            manifest=manifest,
        )
        self.rewriter = LinkRewriter(self.base_url)

        # Unbounded in memory: fine for single-site mirrors.
        self.visited: set[str] = set()
        self.pending: deque[CrawlTarget] = deque([CrawlTarget(self.base_url)])
        self._pending_keys: set[str] = {self.base_url}

        self.status = CrawlStatus.IDLE
        self.stats = CrawlStats(pending=1)
        self._robots: RobotsRules | None = None

    def _emit(self, status: str | None = None) -> None:
        if status is not None:
            self.stats.status = status
        self.stats.visited = len(self.visited)
        self.stats.pending = len(self.pending)
        if self.on_progress is not None:
            self.on_progress(replace(self.stats))

    def _record(self, kind: str, url: str, **fields: object) -> None:
        if self.manifest is not None:
            self.manifest.append(kind, url=url, **fields)

    def _count_file(self, nbytes: int) -> None:
        if nbytes > 0:
            self.stats.bytes_downloaded += nbytes
            self.stats.files_written += 1

    def _may_enqueue(self, url: str) -> bool:
        if not is_same_domain(url, self.base_url):
            return False
        if is_excluded(url, self.cfg.exclude_patterns):
            logger.debug("Excluded by pattern: %s", url)
            return False
        if self._robots is not None and not self._robots.can_fetch(url):
            logger.debug("Disallowed by robots.txt: %s", url)
            return False
        return url not in self.visited and url not in self._pending_keys

    def _enqueue_links(self, soup: BeautifulSoup, page_url: str) -> int:
        added = 0
        for link in extract_links(soup, page_url=page_url):
            if not self._may_enqueue(link):
                continue
            self.pending.append(CrawlTarget(link, found_on=page_url))
            self._pending_keys.add(link)
            added += 1
        return added

    def _process_page(self, url: str, body: bytes, content_type: str) -> None:
        dest = output_path_for(url, self.base_url, self.out_dir, page=True)
        write_bytes(dest, body)
        logger.info("Saved page: %s", dest)

        soup = parse_html(decode_html(body, content_type))
        added = self._enqueue_links(soup, url)

        for asset_url in extract_asset_urls(soup, page_url=url):
            self._count_file(self.fetcher.fetch(asset_url))
            self._emit()

        self.rewriter.rewrite_soup(soup, url)
        write_text(dest, serialize(soup))
        logger.info("Saved rewritten page: %s", dest)

        self._count_file(len(body))
        self._record(
            "fetched",
            url,
            content_type=content_type,
            bytes=len(body),
            links_enqueued=added,
            path=relpath_posix(dest, self.out_dir),
        )

    def _process(self, target: CrawlTarget) -> None:
        url = target.url
        if self.fetcher.has_fetched(url):
            logger.debug("Already downloaded as an asset: %s", url)
            return

        with self.http.stream(
            url, timeout_s=timeout_for(url, self.http.timeout_s)
        ) as resp:
            if resp.status_code >= 400:
                raise HttpStatusError(url, resp.status_code)

            content_type = str(resp.headers.get("Content-Type", ""))
            head = b""
            if not media_type(content_type) and not is_large_file(url):
                head = resp.content[:2048]

            if classify(content_type, head=head) is ContentKind.PAGE:
                self._process_page(url, resp.content, content_type)
            else:
                self._count_file(self.fetcher.store(url, resp))

    def crawl(self) -> CrawlStats:
        started_at = utc_iso()
        self.status = CrawlStatus.RUNNING
        self._emit(CrawlStatus.RUNNING.value)

        if self.cfg.respect_robots:
            self._robots = fetch_robots(
                self.http, self.base_url, user_agent=self.cfg.user_agent
            )

        max_pages = self.cfg.max_pages
        processed = 0
        try:
            while self.pending and (max_pages == 0 or processed < max_pages):
                target = self.pending.popleft()
                self._pending_keys.discard(target.url)
                if target.url in self.visited:
                    continue

                self.visited.add(target.url)
                processed += 1
                status = f"Crawling: {target.url}"
                logger.info(status)
                self._emit(status)

                try:
                    self._process(target)
                except _PER_URL_ERRORS as e:
                    self.stats.errors += 1
                    logger.error("Error crawling %s: %s", target.url, e)
                    if target.found_on:
                        logger.debug("%s was linked from %s", target.url, target.found_on)
                    self._record("error", target.url, error=str(e))
                    self._emit(f"Error: {target.url} - {e}")
                    continue
                self._emit()
        except KeyboardInterrupt:
            self.status = CrawlStatus.ABORTED
            self._emit(CrawlStatus.ABORTED.value)
            raise

        self.status = CrawlStatus.COMPLETED
        self._emit(CrawlStatus.COMPLETED.value)
        logger.info(
            "Crawling completed. Processed %d pages with %d errors.",
            processed,
            self.stats.errors,
        )

        if self.manifest is not None:
            self.manifest.write_summary(
                {
                    "started_at": started_at,
                    "finished_at": utc_iso(),
                    "base_url": self.base_url,
                    "config": {
                        "max_pages": self.cfg.max_pages,
                        "download_external_assets": self.cfg.download_external_assets,
                        "verify_ssl": self.cfg.verify_ssl,
                        "timeout_s": self.cfg.timeout_s,
                        "crawl_delay_s": self.cfg.crawl_delay_s,
                        "respect_robots": self.cfg.respect_robots,
                        "exclude_patterns": [p.pattern for p in self.cfg.exclude_patterns],
                    },
                    "stats": self.stats.to_dict(),
                    "remaining_queue": len(self.pending),
                }
            )
        return self.stats


def mirror_site(
    config: MirrorConfig,
    *,
    session: requests.Session | None = None,
    on_progress: ProgressCallback | None = None,
    max_retries: int = 0,
) -> CrawlStats:
    http = HttpClient(
        session or requests.Session(),
        timeout_s=config.timeout_s,
        verify_ssl=config.verify_ssl,
        user_agent=config.user_agent,
        crawl_delay_s=config.crawl_delay_s,
        max_retries=max_retries,
    )
    config.out_dir.mkdir(parents=True, exist_ok=True)
    crawler = Crawler(
        http=http,
        config=config,
        manifest=ManifestWriter(config.out_dir),
        on_progress=on_progress,
    )
    return crawler.crawl()
