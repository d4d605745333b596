from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .clock import Clock
from .metadata_store import atomic_write_text
from .protocols import ClockProtocol

logger = logging.getLogger(__name__)


@dataclass
class HistoryEntry:
    folder_name: str
    file_name: str
    backup_type: str
    comment: str
    timestamp: str
    important: bool = False


class JsonHistory:
    def __init__(self, path: Path, clock: ClockProtocol | None = None) -> None:
        self._path = path
        self._clock = clock or Clock()
        self._entries: list[HistoryEntry] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def entries(self, folder_name: str | None = None) -> list[HistoryEntry]:
        items = self._load()
        if folder_name is None:
            return list(items)
        return [item for item in items if item.folder_name == folder_name]

    def add_entry(
        self,
        folder_name: str,
        file_name: str,
        backup_type: str,
        comment: str = "",
    ) -> HistoryEntry:
        items = self._load()
        replaced = [
            item
            for item in items
            if item.folder_name == folder_name and item.file_name == file_name
        ]
        entry = HistoryEntry(
            folder_name=folder_name,
            file_name=file_name,
            backup_type=backup_type,
            comment=comment,
            timestamp=self._clock.now().isoformat(timespec="seconds"),
            important=any(item.important for item in replaced),
        )
        # an overwrite backup keeps refreshing the same archive
        items[:] = [item for item in items if item not in replaced]
        items.append(entry)
        self._save()
        return entry

    def rename_entry(
        self,
        folder_name: str,
        old_file_name: str,
        new_file_name: str,
        backup_type: str | None = None,
    ) -> bool:
        renamed = False
        for item in self._load():
            if item.folder_name == folder_name and item.file_name == old_file_name:
                item.file_name = new_file_name
                if backup_type:
                    item.backup_type = backup_type
                renamed = True
        if renamed:
            self._save()
        return renamed

    def remove_entry(self, folder_name: str, file_name: str) -> bool:
        items = self._load()
        kept = [
            item
            for item in items
            if not (item.folder_name == folder_name and item.file_name == file_name)
        ]
        if len(kept) == len(items):
            return False
        items[:] = kept
        self._save()
        return True

    def is_important(self, folder_name: str, file_name: str) -> bool:
        return any(
            item.important
            for item in self._load()
            if item.folder_name == folder_name and item.file_name == file_name
        )

    def set_important(self, folder_name: str, file_name: str, important: bool) -> bool:
        changed = False
        for item in self._load():
            if item.folder_name == folder_name and item.file_name == file_name:
                item.important = important
                changed = True
        if changed:
            self._save()
        return changed

    def _load(self) -> list[HistoryEntry]:
        if self._entries is not None:
            return self._entries
        self._entries = []
        if not self._path.is_file():
            return self._entries
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("History file %s is unreadable, starting empty: %s", self._path, exc)
            return self._entries
        if isinstance(payload, list):
            self._entries = [self._from_dict(raw) for raw in payload if isinstance(raw, dict)]
        return self._entries

    def _save(self) -> None:
        payload = [asdict(item) for item in self._load()]
        atomic_write_text(self._path, json.dumps(payload, indent=2, ensure_ascii=False))

    def _from_dict(self, raw: dict[str, Any]) -> HistoryEntry:
        return HistoryEntry(
            folder_name=str(raw.get("folder_name", "")),
            file_name=str(raw.get("file_name", "")),
            backup_type=str(raw.get("backup_type", "")),
            comment=str(raw.get("comment", "")),
            timestamp=str(raw.get("timestamp", "")),
            important=bool(raw.get("important", False)),
        )
