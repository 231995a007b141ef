from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from .errors import ConfigError
from .urls import url_extension

MIB = 1024 * 1024

DEFAULT_USER_AGENT = "Website-Cloner/1.0"
DEFAULT_TIMEOUT_S = 180
DEFAULT_MAX_FILE_SIZE = 150 * MIB
DEFAULT_FILE_SIZE_LIMITS: Mapping[str, int] = {
    "pdf": 5 * MIB,
    "zip": 200 * MIB,
    "mp4": 300 * MIB,
}

DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    r"\.git",
    r"\.svn",
    r"wp-admin",
    r"wp-json",
    r"wp-login\.php",
    r"xmlrpc\.php",
    r"feed",
    r"\?s=",
    r"\?p=",
)

# Streamed in chunks instead of being buffered in memory.
LARGE_FILE_EXTENSIONS = frozenset(
    {
        "zip", "rar", "7z", "tar", "gz", "tgz", "bz2", "xz",
        "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "odt", "ods",
        "mp4", "webm", "mov", "avi", "mkv", "mp3", "wav", "ogg", "flac",
        "iso", "dmg", "exe", "msi",
    }
)  # fmt: skip

# Fetched with a doubled timeout.
DOCUMENT_EXTENSIONS = frozenset({"pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx"})


@dataclass(frozen=True)
class SizePolicy:
    default_limit: int = DEFAULT_MAX_FILE_SIZE
    per_extension: Mapping[str, int] = field(
        default_factory=lambda: dict(DEFAULT_FILE_SIZE_LIMITS)
    )

    def limit_for(self, url: str) -> int:
        ext = url_extension(url)
        return int(self.per_extension.get(ext, self.default_limit))


def compile_patterns(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    compiled: list[re.Pattern[str]] = []
    for raw in patterns:
        try:
            compiled.append(re.compile(raw))
        except re.error as e:
            raise ConfigError(f"Invalid exclude pattern {raw!r}: {e}") from e
    return tuple(compiled)


@dataclass
class MirrorConfig:
    base_url: str
    out_dir: Path
    max_pages: int = 0
    download_external_assets: bool = False
    verify_ssl: bool = True
    timeout_s: float = DEFAULT_TIMEOUT_S
    user_agent: str = DEFAULT_USER_AGENT
    crawl_delay_s: float = 0.0
    exclude_patterns: tuple[re.Pattern[str], ...] = field(
        default_factory=lambda: compile_patterns(DEFAULT_EXCLUDE_PATTERNS)
    )
    respect_robots: bool = False
    size_policy: SizePolicy = field(default_factory=SizePolicy)

    def __post_init__(self) -> None:
        if self.max_pages < 0:
            raise ConfigError("max_pages must be >= 0 (0 means unlimited)")
        if self.timeout_s <= 0:
            raise ConfigError("timeout must be positive")
        if self.crawl_delay_s < 0:
            raise ConfigError("crawl delay must be >= 0")


# Keys accepted in a JSON config file, mapped to MirrorConfig fields.
_FILE_KEYS = {
    "max_pages": "max_pages",
    "download_external_assets": "download_external_assets",
    "verify_ssl": "verify_ssl",
    "request_timeout": "timeout_s",
    "user_agent": "user_agent",
    "crawl_delay": "crawl_delay_s",
    "respect_robots_txt": "respect_robots",
}


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a JSON config file into MirrorConfig keyword overrides."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    out: dict[str, Any] = {}
    for key, attr in _FILE_KEYS.items():
        if key in raw:
            out[attr] = raw[key]

    if "exclude_patterns" in raw:
        patterns = raw["exclude_patterns"]
        if not isinstance(patterns, list):
            raise ConfigError("exclude_patterns must be a list of regexes")
        out["exclude_patterns"] = compile_patterns(str(p) for p in patterns)

    if "max_file_size" in raw or "file_size_limits" in raw:
        limits = raw.get("file_size_limits", DEFAULT_FILE_SIZE_LIMITS)
        if not isinstance(limits, dict):
            raise ConfigError("file_size_limits must map extensions to bytes")
        try:
            out["size_policy"] = SizePolicy(
                default_limit=int(raw.get("max_file_size", DEFAULT_MAX_FILE_SIZE)),
                per_extension={
                    str(k).lower().lstrip("."): int(v) for k, v in limits.items()
                },
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid size limit in {path}: {e}") from e

    return out
