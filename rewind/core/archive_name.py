from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_NAME_PATTERN = re.compile(
    r"^\[(?P<kind>[^\[\]]+)\]"
    r"\[(?P<stamp>\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})\]"
    r"(?P<base>.*?)"
    r"(?: \[(?P<comment>[^\[\]]*)\])?$"
)
_INVALID_CHARS = frozenset('<>:"/\\|?*[]')


class ArchiveKind(str, Enum):
    FULL = "Full"
    SMART = "Smart"
    OVERWRITE = "Overwrite"

    @classmethod
    def from_label(cls, label: str) -> ArchiveKind | None:
        lowered = label.strip().lower()
        for kind in cls:
            if kind.value.lower() == lowered:
                return kind
        return None


def sanitize_comment(text: str | None) -> str:
    if not text:
        return ""
    cleaned = "".join(
        char for char in text if char not in _INVALID_CHARS and ord(char) >= 32
    )
    return cleaned.strip()


@dataclass(frozen=True)
class ArchiveName:
    kind: ArchiveKind
    timestamp: datetime
    base_name: str
    extension: str
    comment: str = ""

    @classmethod
    def build(
        cls,
        kind: ArchiveKind,
        base_name: str,
        extension: str,
        when: datetime,
        comment: str | None = None,
    ) -> ArchiveName:
        return cls(
            kind=kind,
            timestamp=when.replace(microsecond=0),
            base_name=base_name,
            extension=extension.lstrip("."),
            comment=sanitize_comment(comment),
        )

    @classmethod
    def parse(cls, file_name: str) -> ArchiveName | None:
        if "." not in file_name:
            return None
        stem, extension = file_name.rsplit(".", 1)
        match = _NAME_PATTERN.match(stem)
        if not match:
            return None
        kind = ArchiveKind.from_label(match.group("kind"))
        if kind is None:
            return None
        try:
            stamp = datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT)
        except ValueError:
            return None
        return cls(
            kind=kind,
            timestamp=stamp,
            base_name=match.group("base"),
            extension=extension,
            comment=match.group("comment") or "",
        )

    @property
    def file_name(self) -> str:
        comment_part = f" [{self.comment}]" if self.comment else ""
        stamp = self.timestamp.strftime(TIMESTAMP_FORMAT)
        return f"[{self.kind.value}][{stamp}]{self.base_name}{comment_part}.{self.extension}"

    def with_timestamp(self, when: datetime) -> ArchiveName:
        return replace(self, timestamp=when.replace(microsecond=0))

    def with_kind(self, kind: ArchiveKind) -> ArchiveName:
        return replace(self, kind=kind)

    def __str__(self) -> str:
        return self.file_name


def archive_kind(path: Path) -> ArchiveKind | None:
    parsed = ArchiveName.parse(path.name)
    if parsed is not None:
        return parsed.kind
    lowered = path.name.lower()
    for kind in ArchiveKind:
        if f"[{kind.value.lower()}]" in lowered:
            return kind
    return None


def archive_sort_key(path: Path) -> tuple[datetime, str]:
    parsed = ArchiveName.parse(path.name)
    if parsed is not None:
        return parsed.timestamp, path.name
    try:
        modified = datetime.fromtimestamp(path.stat().st_mtime)
    except OSError:
        modified = datetime.min
    return modified, path.name


def list_archives(directory: Path, extension: str | None = None) -> list[Path]:
    """Return archives in ``directory`` ordered oldest first."""
    if not directory.is_dir():
        return []
    suffix = f".{extension.lstrip('.').lower()}" if extension else None
    archives = [
        entry
        for entry in directory.iterdir()
        if entry.is_file() and (suffix is None or entry.name.lower().endswith(suffix))
    ]
    archives.sort(key=archive_sort_key)
    return archives
