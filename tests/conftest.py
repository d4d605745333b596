from __future__ import annotations

import os
import zipfile
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from rewind.core.archiver_client import ArchiverMode, ArchiverResult
from rewind.core.backup_config import (
    ArchiveSettings,
    BackupConfig,
    FilterSettings,
    FolderDescriptor,
)
from rewind.core.blacklist import Blacklist, RuleKind, glob_matches


class FixedClock:
    def __init__(self) -> None:
        self._now = datetime(2026, 2, 16, 1, 2, 3)
        self._timestamp = "20260216-010203"
        self._iso = "2026-02-16T01:02:03Z"

    def now(self) -> datetime:
        return self._now

    def now_iso(self) -> str:
        return self._iso

    def timestamp(self) -> str:
        return self._timestamp


class SteppingClock:
    """Moves forward by ``step`` on every ``now()`` so archive names never collide."""

    def __init__(
        self,
        start: datetime = datetime(2026, 2, 16, 10, 0, 0),
        step: timedelta = timedelta(minutes=1),
    ) -> None:
        self._current = start
        self._step = step

    def now(self) -> datetime:
        value = self._current
        self._current += self._step
        return value

    def now_iso(self) -> str:
        return self._current.isoformat(timespec="seconds")

    def timestamp(self) -> str:
        return self._current.strftime("%Y%m%d-%H%M%S")


class FakeArchiver:
    """Zip-backed stand-in for the 7-Zip adapter.

    ``add``/``update`` merge files into the archive (existing entries are
    replaced, never removed) and ``extract`` unpacks into ``source_dir``.
    Blacklist switches honour the non-regex rules only, like the real CLI.
    """

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.levels: dict[str, dict[str, int]] = {}
        self.fail_on: set[tuple[ArchiverMode, str]] = set()
        self.fail_all: set[ArchiverMode] = set()

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
        listed = None
        if list_file is not None:
            listed = list_file.read_text(encoding="utf-8").splitlines()
        self.calls.append(
            {
                "mode": mode,
                "source_dir": source_dir,
                "archive": archive_path.name,
                "listed": listed,
                "exclude_patterns": list(exclude_patterns),
                "include_patterns": list(include_patterns),
                "level": level,
                "solid": solid,
                "timeout": timeout,
            }
        )
        if mode in self.fail_all or (mode, archive_path.name) in self.fail_on:
            return ArchiverResult(exit_code=2)

        if mode is ArchiverMode.EXTRACT:
            if not archive_path.is_file():
                return ArchiverResult(exit_code=2)
            source_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(archive_path) as archive:
                archive.extractall(source_dir)
            return ArchiverResult(exit_code=0)

        if listed is not None:
            files = [line.replace(os.sep, "/") for line in listed if line.strip()]
        else:
            files = self._select(source_dir, filters, exclude_patterns, include_patterns)

        entries: dict[str, bytes] = {}
        if archive_path.is_file():
            with zipfile.ZipFile(archive_path) as archive:
                entries = {name: archive.read(name) for name in archive.namelist()}
        for rel_path in files:
            entries[rel_path] = (source_dir / rel_path).read_bytes()
            self.levels.setdefault(archive_path.name, {})[rel_path] = (
                settings.compression_level if level is None else level
            )

        with zipfile.ZipFile(archive_path, "w") as archive:
            for name, data in entries.items():
                archive.writestr(name, data)
        return ArchiverResult(exit_code=0)

    def calls_for(self, mode: ArchiverMode) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["mode"] is mode]

    def _select(
        self,
        source_dir: Path,
        filters: FilterSettings | None,
        exclude_patterns: Sequence[str],
        include_patterns: Sequence[str],
    ) -> list[str]:
        rules = [
            rule
            for rule in Blacklist(source_dir, filters).rules
            if rule.kind is not RuleKind.REGEX
        ]
        selected: list[str] = []
        for path in sorted(source_dir.rglob("*")):
            if not path.is_file():
                continue
            rel_path = path.relative_to(source_dir).as_posix()
            if any(rule.matches(rel_path) for rule in rules):
                continue
            if any(glob_matches(rel_path, pattern) for pattern in exclude_patterns):
                continue
            if include_patterns and not any(
                glob_matches(rel_path, pattern) for pattern in include_patterns
            ):
                continue
            selected.append(rel_path)
        return selected


def archive_contents(archive_path: Path) -> dict[str, bytes]:
    with zipfile.ZipFile(archive_path) as archive:
        return {name: archive.read(name) for name in archive.namelist()}


def write_file(path: Path, text: str, mtime: float | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def tree_contents(root: Path) -> dict[str, str]:
    return {
        path.relative_to(root).as_posix(): path.read_text(encoding="utf-8")
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def stepping_clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def fake_archiver() -> FakeArchiver:
    return FakeArchiver()


@pytest.fixture
def sample_config(tmp_path: Path) -> BackupConfig:
    project_root = tmp_path / "project"
    includes_dir = project_root / "config" / "includes"
    includes_dir.mkdir(parents=True, exist_ok=True)

    source = tmp_path / "sources" / "World"
    source.mkdir(parents=True, exist_ok=True)
    destination = tmp_path / "dest"
    report_dir = tmp_path / "reports"
    report_dir.mkdir(parents=True, exist_ok=True)
    source_include_file = includes_dir / "folders.include"
    source_include_file.write_text(f"{source} | World\n", encoding="utf-8")

    return BackupConfig(
        project_root=project_root,
        env_file=tmp_path / "rewind.env",
        destination=destination,
        source_include_file=source_include_file,
        folders=[FolderDescriptor(source, "World")],
        report_dir=report_dir,
        history_file=destination / "_metadata" / "history.json",
        archive=ArchiveSettings(format="zip", compression_level=5),
        filters=FilterSettings(),
    )


@pytest.fixture
def world(sample_config: BackupConfig) -> FolderDescriptor:
    return sample_config.folders[0]
