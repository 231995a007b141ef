from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from .config import DEFAULT_EXCLUDE_PATTERNS, MirrorConfig, compile_patterns, load_config_file
from .crawl import CrawlStats, mirror_site
from .errors import ConfigError

logger = logging.getLogger(__name__)

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(num_bytes: int, precision: int = 2) -> str:
    value = float(max(int(num_bytes), 0))
    power = 0
    while value >= 1024 and power < len(_UNITS) - 1:
        value /= 1024
        power += 1
    value = round(value, precision)
    if value == int(value):
        value = int(value)
    return f"{value} {_UNITS[power]}"


class ProgressBar:
    """``on_progress`` observer that drives a tqdm bar.

    With no page budget the total tracks visited + pending URLs.
    """

    def __init__(self, max_pages: int, *, disable: bool = False) -> None:
        self.max_pages = max_pages
        self.bar = tqdm(
            total=max_pages or 1,
            unit="page",
            desc="Mirroring",
            disable=disable,
            dynamic_ncols=True,
        )

    def __call__(self, stats: CrawlStats) -> None:
        if self.max_pages <= 0:
            total = max(stats.visited + stats.pending, 1)
            if total != self.bar.total:
                self.bar.total = total
        self.bar.update(stats.visited - self.bar.n)
        self.bar.set_postfix(
            files=stats.files_written,
            size=format_bytes(stats.bytes_downloaded),
            refresh=False,
        )
        self.bar.set_description_str(stats.status[:60], refresh=True)

    def close(self) -> None:
        self.bar.close()


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="site-cloner",
        description="Clone a website for offline viewing",
    )
    p.add_argument("url", help="The URL of the website to clone")
    p.add_argument("-o", "--output", type=Path, default=Path("./output"))
    p.add_argument(
        "-m",
        "--max-pages",
        type=int,
        default=None,
        help="Maximum number of pages to clone (0 for unlimited)",
    )
    p.add_argument(
        "-e",
        "--download-external",
        dest="download_external_assets",
        action="store_true",
        default=None,
        help="Download assets hosted on other domains",
    )
    ssl = p.add_mutually_exclusive_group()
    ssl.add_argument("--verify-ssl", dest="verify_ssl", action="store_true", default=None)
    ssl.add_argument(
        "--no-verify-ssl", dest="verify_ssl", action="store_false", default=None
    )
    p.add_argument("-t", "--timeout", dest="timeout_s", type=float, default=None)
    p.add_argument("-u", "--user-agent", default=None)
    p.add_argument(
        "--crawl-delay",
        dest="crawl_delay_s",
        type=float,
        default=None,
        help="Seconds between requests to the same host",
    )
    p.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Repeatable; regex matched against discovered URLs",
    )
    p.add_argument(
        "--no-default-excludes",
        action="store_true",
        help="Do not apply the built-in exclusion patterns",
    )
    p.add_argument(
        "--respect-robots",
        dest="respect_robots",
        action="store_true",
        default=None,
    )
    p.add_argument(
        "--retries",
        type=int,
        default=0,
        help="Transport retries for 429/5xx responses (default: 0)",
    )
    p.add_argument("--config", type=Path, default=None, help="JSON config file")
    p.add_argument("--verbose", action="store_true", help="Enable debug logging")
    p.add_argument(
        "--log-level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
    )
    p.add_argument("--log-file", type=Path, default=None)
    p.add_argument("--no-progress", action="store_true")
    return p


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if args.verbose else getattr(logging, args.log_level.upper())
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if args.log_file is not None:
        args.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(args.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


def build_config(args: argparse.Namespace) -> MirrorConfig:
    options: dict[str, Any] = {}
    if args.config is not None:
        options.update(load_config_file(args.config))

    for name in (
        "max_pages",
        "download_external_assets",
        "verify_ssl",
        "timeout_s",
        "user_agent",
        "crawl_delay_s",
        "respect_robots",
    ):
        value = getattr(args, name)
        if value is not None:
            options[name] = value

    if args.no_default_excludes or args.exclude:
        base = () if args.no_default_excludes else options.get(
            "exclude_patterns", compile_patterns(DEFAULT_EXCLUDE_PATTERNS)
        )
        options["exclude_patterns"] = tuple(base) + compile_patterns(args.exclude)

    return MirrorConfig(base_url=args.url, out_dir=args.output, **options)


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    _configure_logging(args)

    try:
        config = build_config(args)
    except (ConfigError, TypeError, ValueError) as e:
        print(f"site-cloner: {e}", file=sys.stderr)
        return 2

    logger.debug("Effective config: %s", config)
    print(f"Starting to clone {config.base_url} to {config.out_dir}")
    progress = ProgressBar(config.max_pages, disable=args.no_progress)
    try:
        with logging_redirect_tqdm():
            stats = mirror_site(config, on_progress=progress, max_retries=args.retries)
    except KeyboardInterrupt:
        progress.close()
        print("Interrupted; partial mirror left in place.", file=sys.stderr)
        return 130
    except OSError as e:
        progress.close()
        print(str(e), file=sys.stderr)
        return 2
    progress.close()

    print("Website cloning completed!")
    print(f"Pages visited: {stats.visited}")
    print(f"Total downloaded files: {stats.files_written}")
    print(f"Total download size: {format_bytes(stats.bytes_downloaded)}")
    if stats.errors:
        print(f"Errors: {stats.errors} (see log for details)")
    return 0
