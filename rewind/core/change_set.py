from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from .file_scanner import FileState, normalize_key
from .metadata_store import BackupMetadata


class FileStateComparer(Protocol):
    def is_changed(self, old: FileState, new: FileState) -> bool:
        ...


class SizeAndTimeComparer:
    def is_changed(self, old: FileState, new: FileState) -> bool:
        return old.size != new.size or old.modified_utc != new.modified_utc


class HashComparer(SizeAndTimeComparer):
    """Strict comparison: a differing content hash counts even when size and time match.

    Only effective when the scanner was built with a hasher and the stored
    snapshot carries hashes as well.
    """

    def is_changed(self, old: FileState, new: FileState) -> bool:
        if super().is_changed(old, new):
            return True
        return bool(old.hash and new.hash and old.hash != new.hash)


class ChangeSetCalculator:
    def __init__(self, comparer: FileStateComparer | None = None) -> None:
        self._comparer = comparer or SizeAndTimeComparer()

    def diff(
        self,
        old: BackupMetadata,
        new: Mapping[str, FileState],
    ) -> list[str]:
        """Return new or modified paths, sorted.

        Files missing from ``new`` are never reported: incremental archives
        only ever add content.
        """
        previous = {normalize_key(path): state for path, state in old.file_states.items()}
        changed: list[str] = []
        for rel_path, state in new.items():
            old_state = previous.get(normalize_key(rel_path))
            if old_state is None or self._comparer.is_changed(old_state, state):
                changed.append(rel_path)
        return sorted(changed)

    def is_unchanged(
        self,
        old: BackupMetadata,
        new: Mapping[str, FileState],
    ) -> bool:
        if len(old.file_states) != len(new):
            return False
        return not self.diff(old, new)
