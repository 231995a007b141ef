from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

META_DIRNAME = ".site-cloner"


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def relpath_posix(path: Path, base_dir: Path) -> str:
    try:
        return path.relative_to(base_dir).as_posix()
    except ValueError:
        return path.as_posix()


@dataclass
class ManifestWriter:
    """Append-only JSONL record of what a crawl did, plus a final summary."""

    out_dir: Path

    def __post_init__(self) -> None:
        self.meta_dir = self.out_dir / META_DIRNAME
        self.jsonl_path = self.meta_dir / "manifest.jsonl"
        self.json_path = self.meta_dir / "manifest.json"

    def append(self, kind: str, **fields: Any) -> None:
        event: dict[str, Any] = {"kind": kind, "at": utc_iso()}
        event.update(fields)
        self.meta_dir.mkdir(parents=True, exist_ok=True)
        with self.jsonl_path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")

    def write_summary(self, summary: dict[str, Any]) -> None:
        self.meta_dir.mkdir(parents=True, exist_ok=True)
        self.json_path.write_text(
            json.dumps(summary, indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
