from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Protocol

from .archiver_client import ArchiverMode, ArchiverResult
from .backup_config import ArchiveSettings, FilterSettings
from .file_scanner import FileState


class ArchiverProtocol(Protocol):
    def run_archiver(
        self,
        mode: ArchiverMode,
        source_dir: Path,
        archive_path: Path,
        settings: ArchiveSettings,
        *,
        list_file: Path | None = None,
        filters: FilterSettings | None = None,
        exclude_patterns: Sequence[str] = (),
        include_patterns: Sequence[str] = (),
        level: int | None = None,
        solid: bool | None = None,
        timeout: float | None = None,
    ) -> ArchiverResult:
        ...


class FileScannerProtocol(Protocol):
    def scan(
        self,
        root: Path,
        filters: FilterSettings | None = None,
    ) -> dict[str, FileState]:
        ...


class HistoryProtocol(Protocol):
    def add_entry(
        self,
        folder_name: str,
        file_name: str,
        backup_type: str,
        comment: str = "",
    ) -> object:
        ...

    def rename_entry(
        self,
        folder_name: str,
        old_file_name: str,
        new_file_name: str,
        backup_type: str | None = None,
    ) -> bool:
        ...

    def remove_entry(self, folder_name: str, file_name: str) -> bool:
        ...

    def is_important(self, folder_name: str, file_name: str) -> bool:
        ...


class ClockProtocol(Protocol):
    def now(self) -> datetime:
        ...

    def now_iso(self) -> str:
        ...

    def timestamp(self) -> str:
        ...
