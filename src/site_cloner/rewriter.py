from __future__ import annotations

import logging
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Doctype

from .paths import depth_prefix, mirror_relative_path
from .urls import is_absolute, is_same_domain, make_absolute, normalize_url

logger = logging.getLogger(__name__)

DOCTYPE = "<!DOCTYPE html>"

_PASSTHROUGH_PREFIXES = ("#", "javascript:", "data:", "mailto:")

# (selector, attribute, is_page_link)
PAGE_LINK_SELECTOR = ("a[href]", "href", True)
ASSET_SELECTORS = (
    ("link[rel~=stylesheet][href]", "href", False),
    ("script[src]", "src", False),
    ("img[src]", "src", False),
)
REWRITE_SELECTORS = (PAGE_LINK_SELECTOR, *ASSET_SELECTORS)


def attr_text(val: object) -> str:
    if isinstance(val, list):
        if not val:
            return ""
        return str(val[0])
    return str(val or "")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def effective_base_url(soup: BeautifulSoup, page_url: str) -> str:
    base = soup.find("base")
    if base is not None:
        href = attr_text(base.get("href")).strip()
        if href:
            return urljoin(page_url, href)
    return page_url


def has_doctype(soup: BeautifulSoup) -> bool:
    return any(isinstance(node, Doctype) for node in soup.contents)


class LinkRewriter:
    """Turns intra-site references into paths relative to the current page."""

    def __init__(self, base_url: str) -> None:
        self.base_url = normalize_url(base_url)

    def should_rewrite(self, value: str) -> bool:
        ref = value.strip()
        if not ref or ref.lower().startswith(_PASSTHROUGH_PREFIXES):
            return False
        if not (is_absolute(ref) or ref.startswith("//")):
            return True
        # Hosts compare the way the crawler sees them: normalized.
        absolute = normalize_url(make_absolute(ref, self.base_url))
        if not absolute.startswith(("http://", "https://")):
            return False
        return is_same_domain(absolute, self.base_url)

    def rewrite_reference(
        self,
        value: str,
        page_url: str,
        *,
        page: bool = True,
        resolve_against: str | None = None,
    ) -> str:
        if not self.should_rewrite(value):
            return value

        absolute = make_absolute(value.strip(), resolve_against or page_url)
        key = normalize_url(absolute)
        if not is_same_domain(key, self.base_url):
            return value
        target = mirror_relative_path(key, self.base_url, page=page)
        current = mirror_relative_path(normalize_url(page_url), self.base_url, page=True)
        link = depth_prefix(current) + target

        if page:
            fragment = urlparse(absolute).fragment
            if fragment:
                link += "#" + fragment
        return link

    def rewrite_soup(self, soup: BeautifulSoup, page_url: str) -> int:
        """Rewrite references in place; returns how many attributes changed."""

        resolve_against = effective_base_url(soup, page_url)
        changed = 0
        for selector, attr, is_page in REWRITE_SELECTORS:
            for node in soup.select(selector):
                value = attr_text(node.get(attr))
                if not value:
                    continue
                new_value = self.rewrite_reference(
                    value, page_url, page=is_page, resolve_against=resolve_against
                )
                if new_value != value:
                    node[attr] = new_value
                    changed += 1

        # A same-site <base> would re-anchor the rewritten relative links.
        for base in soup.find_all("base"):
            href = attr_text(base.get("href")).strip()
            if href and is_same_domain(href, self.base_url):
                base.decompose()
        return changed

    def rewrite(self, html: str, page_url: str) -> str:
        soup = parse_html(html)
        changed = self.rewrite_soup(soup, page_url)
        logger.debug("Rewrote %d references in %s", changed, page_url)
        return serialize(soup)


def serialize(soup: BeautifulSoup) -> str:
    out = str(soup)
    if not has_doctype(soup):
        out = DOCTYPE + "\n" + out
    return out
