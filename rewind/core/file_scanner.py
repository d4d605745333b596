from __future__ import annotations

import hashlib
import logging
import os
import sys
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .backup_config import FilterSettings
from .blacklist import Blacklist
from .errors import SourceMissingError

logger = logging.getLogger(__name__)

_CASE_INSENSITIVE = sys.platform in ("win32", "darwin")


@dataclass(frozen=True)
class FileState:
    size: int
    modified_utc: datetime
    hash: str | None = None


def normalize_key(rel_path: str) -> str:
    key = rel_path.replace("\\", "/")
    return key.casefold() if _CASE_INSENSITIVE else key


def sha256_file(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


class FileScanner:
    def __init__(self, hasher: Callable[[Path], str] | None = None) -> None:
        self._hasher = hasher

    def scan(
        self,
        root: Path,
        filters: FilterSettings | None = None,
    ) -> dict[str, FileState]:
        if not root.is_dir():
            raise SourceMissingError(f"Source folder does not exist: {root}")

        blacklist = Blacklist(root, filters)
        states: dict[str, FileState] = {}
        for current, dirs, files in os.walk(root, onerror=self._on_walk_error):
            base = Path(current)
            dirs[:] = [
                name
                for name in dirs
                if not blacklist.is_excluded((base / name).relative_to(root).as_posix())
            ]
            for name in files:
                full_path = base / name
                rel_path = full_path.relative_to(root).as_posix()
                if blacklist.is_excluded(rel_path):
                    continue
                try:
                    stat = full_path.stat()
                    digest = self._hasher(full_path) if self._hasher else None
                except OSError as exc:
                    logger.debug("Skipping unreadable entry %s: %s", full_path, exc)
                    continue
                states[rel_path] = FileState(
                    size=stat.st_size,
                    modified_utc=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    hash=digest,
                )
        return states

    def _on_walk_error(self, error: OSError) -> None:
        logger.debug("Skipping inaccessible directory %s: %s", error.filename, error)
