from __future__ import annotations

import json
import logging

import pytest
import requests

from site_cloner.crawl import (
    CrawlStatus,
    Crawler,
    extract_asset_urls,
    extract_links,
    mirror_site,
)
from site_cloner.manifest import META_DIRNAME
from site_cloner.rewriter import parse_html


@pytest.fixture
def site(make_page, make_response):
    home = make_page(
        '<a href="/about">About</a>'
        '<a href="https://other.com/x">Other</a>'
        '<a href="/wp-admin/settings">Admin</a>'
        '<img src="/logo.png">',
        head='<link rel="stylesheet" href="/style.css">',
    )
    about = make_page(
        '<a href="/">Home</a><a href="/about">Self</a><img src="/logo.png">',
        head='<link rel="stylesheet" href="/style.css">',
    )
    return {
        "https://example.com/": home,
        "https://example.com/about": about,
        "https://example.com/style.css": make_response(b"body{}", content_type="text/css"),
        "https://example.com/logo.png": make_response(b"\x89PNG", content_type="image/png"),
    }


def test_mirrors_pages_and_assets(site, make_session, make_config):
    session = make_session(site)
    cfg = make_config()

    stats = mirror_site(cfg, session=session)

    out = cfg.out_dir
    assert (out / "index.html").is_file()
    assert (out / "about.html").is_file()
    assert (out / "style.css").read_bytes() == b"body{}"
    assert (out / "logo.png").read_bytes() == b"\x89PNG"

    assert stats.visited == 2
    assert stats.pending == 0
    assert stats.errors == 0
    assert stats.files_written == 4
    assert stats.status == CrawlStatus.COMPLETED.value

    requested = session.urls_requested()
    assert not any("other.com" in u for u in requested)
    assert not any("wp-admin" in u for u in requested)
    assert requested.count("https://example.com/style.css") == 1
    assert requested.count("https://example.com/logo.png") == 1


def test_saved_pages_are_rewritten(site, make_session, make_config):
    cfg = make_config()
    mirror_site(cfg, session=make_session(site))

    html = (cfg.out_dir / "index.html").read_text(encoding="utf-8")
    assert html.startswith("<!DOCTYPE html>")
    assert 'href="about.html"' in html
    assert 'href="style.css"' in html
    assert 'src="logo.png"' in html
    assert 'href="https://other.com/x"' in html


def test_bytes_downloaded_counts_every_file(site, make_session, make_config):
    cfg = make_config()
    stats = mirror_site(cfg, session=make_session(site))

    expected = sum(len(site[u].content) for u in site)
    assert stats.bytes_downloaded == expected


def test_max_pages_leaves_rest_pending(site, make_session, make_config):
    cfg = make_config(max_pages=1)
    stats = mirror_site(cfg, session=make_session(site))

    assert stats.visited == 1
    assert stats.pending == 1
    assert not (cfg.out_dir / "about.html").exists()
    assert stats.status == CrawlStatus.COMPLETED.value


def test_base_url_without_trailing_slash(site, make_session, make_config):
    cfg = make_config(base_url="https://example.com")
    stats = mirror_site(cfg, session=make_session(site))

    assert stats.visited == 2
    assert (cfg.out_dir / "index.html").is_file()


def test_failures_are_isolated(make_page, make_session, make_config, caplog):
    routes = {
        "https://example.com/": make_page(
            '<a href="/broken">B</a><a href="/missing">M</a><a href="/about">A</a>'
        ),
        "https://example.com/broken": requests.ConnectionError("connection refused"),
        "https://example.com/about": make_page("<p>about</p>"),
    }
    seen: list[str] = []
    cfg = make_config()

    with caplog.at_level(logging.ERROR, logger="site_cloner"):
        stats = mirror_site(
            cfg, session=make_session(routes), on_progress=lambda s: seen.append(s.status)
        )

    assert stats.errors == 2
    assert stats.visited == 4
    assert (cfg.out_dir / "about.html").is_file()
    assert "Error crawling https://example.com/broken" in caplog.text
    assert any(s.startswith("Error: https://example.com/missing - HTTP 404") for s in seen)
    assert seen[0] == CrawlStatus.RUNNING.value
    assert seen[-1] == CrawlStatus.COMPLETED.value


def test_non_html_anchor_target_saved_as_file(make_page, make_response, make_session, make_config):
    routes = {
        "https://example.com/": make_page('<a href="docs/report.pdf">Report</a>'),
        "https://example.com/docs/report.pdf": make_response(
            b"%PDF-1.4", content_type="application/pdf"
        ),
    }
    cfg = make_config()
    stats = mirror_site(cfg, session=make_session(routes))

    assert (cfg.out_dir / "docs" / "report.pdf").read_bytes() == b"%PDF-1.4"
    assert 'href="docs/report.pdf"' in (cfg.out_dir / "index.html").read_text(encoding="utf-8")
    assert stats.files_written == 2


def test_anchor_to_downloaded_asset_is_not_refetched(make_page, make_response, make_session, make_config):
    routes = {
        "https://example.com/": make_page(
            '<a href="/style.css">CSS</a>',
            head='<link rel="stylesheet" href="/style.css">',
        ),
        "https://example.com/style.css": make_response(b"a{}", content_type="text/css"),
    }
    session = make_session(routes)
    mirror_site(make_config(), session=session)

    assert session.urls_requested().count("https://example.com/style.css") == 1


def test_untyped_html_response_is_sniffed(make_response, make_page, make_session, make_config):
    routes = {
        "https://example.com/": make_response(b"<html><body><a href='/next'>n</a></body></html>"),
        "https://example.com/next": make_page("<p>next</p>"),
    }
    cfg = make_config()
    mirror_site(cfg, session=make_session(routes))

    assert 'href="next.html"' in (cfg.out_dir / "index.html").read_text(encoding="utf-8")
    assert (cfg.out_dir / "next.html").is_file()


def test_directory_pages_get_index_files(make_page, make_session, make_config):
    routes = {
        "https://example.com/": make_page('<a href="/blog/">Blog</a>'),
        "https://example.com/blog/": make_page('<a href="post">Post</a><a href="/">Home</a>'),
        "https://example.com/blog/post": make_page("<p>post</p>"),
    }
    cfg = make_config()
    mirror_site(cfg, session=make_session(routes))

    blog = (cfg.out_dir / "blog" / "index.html").read_text(encoding="utf-8")
    assert 'href="../blog/post.html"' in blog
    assert 'href="../index.html"' in blog
    assert (cfg.out_dir / "blog" / "post.html").is_file()


def test_robots_rules_respected_when_enabled(make_page, make_response, make_session, make_config):
    routes = {
        "https://example.com/robots.txt": make_response(
            b"User-agent: *\nDisallow: /private/\n", content_type="text/plain"
        ),
        "https://example.com/": make_page('<a href="/private/x">P</a><a href="/about">A</a>'),
        "https://example.com/about": make_page("<p>about</p>"),
        "https://example.com/private/x": make_page("<p>secret</p>"),
    }
    session = make_session(routes)
    mirror_site(make_config(respect_robots=True), session=session)

    requested = session.urls_requested()
    assert "https://example.com/about" in requested
    assert "https://example.com/private/x" not in requested


def test_robots_ignored_by_default(make_page, make_session, make_config):
    routes = {
        "https://example.com/": make_page('<a href="/private/x">P</a>'),
        "https://example.com/private/x": make_page("<p>x</p>"),
    }
    session = make_session(routes)
    mirror_site(make_config(), session=session)

    assert "https://example.com/robots.txt" not in session.urls_requested()
    assert "https://example.com/private/x" in session.urls_requested()


def test_manifest_written(site, make_session, make_config):
    cfg = make_config()
    mirror_site(cfg, session=make_session(site))

    meta = cfg.out_dir / META_DIRNAME
    summary = json.loads((meta / "manifest.json").read_text(encoding="utf-8"))
    assert summary["base_url"] == "https://example.com/"
    assert summary["stats"]["visited"] == 2
    assert summary["remaining_queue"] == 0

    events = [json.loads(line) for line in (meta / "manifest.jsonl").read_text(encoding="utf-8").splitlines()]
    kinds = {e["kind"] for e in events}
    assert {"fetched", "asset"} <= kinds


def test_interrupt_marks_crawl_aborted(site, make_session, make_http, make_config):
    def stop(stats):
        if stats.status.startswith("Crawling"):
            raise KeyboardInterrupt

    crawler = Crawler(
        http=make_http(make_session(site)), config=make_config(), on_progress=stop
    )
    with pytest.raises(KeyboardInterrupt):
        crawler.crawl()
    assert crawler.status is CrawlStatus.ABORTED


def test_extract_links_and_assets():
    soup = parse_html(
        '<base href="https://example.com/sub/">'
        '<a href="page">p</a><a href="#x">x</a><a href="mailto:a@b.c">m</a>'
        '<a href="https://other.com/">o</a>'
        '<img src="a.png"><script src="app.js"></script>'
        '<link rel="stylesheet" href="s.css"><img src="a.png">'
    )
    assert extract_links(soup, page_url="https://example.com/") == [
        "https://example.com/sub/page",
        "https://other.com/",
    ]
    assert extract_asset_urls(soup, page_url="https://example.com/") == [
        "https://example.com/sub/s.css",
        "https://example.com/sub/app.js",
        "https://example.com/sub/a.png",
    ]
