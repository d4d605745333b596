from __future__ import annotations

from datetime import datetime, timedelta, timezone

from rewind.core.change_set import ChangeSetCalculator, HashComparer
from rewind.core.file_scanner import FileState
from rewind.core.metadata_store import BackupMetadata

BASE_TIME = datetime(2026, 2, 16, 8, 0, 0, tzinfo=timezone.utc)


def _state(size: int, minutes: int = 0, digest: str | None = None) -> FileState:
    return FileState(size=size, modified_utc=BASE_TIME + timedelta(minutes=minutes), hash=digest)


def _metadata(states: dict[str, FileState]) -> BackupMetadata:
    return BackupMetadata(
        last_backup_file_name="[Full][2026-02-16_08-00-00]World.7z",
        based_on_full_backup="[Full][2026-02-16_08-00-00]World.7z",
        file_states=states,
    )


def test_diff_reports_new_and_modified_but_not_deleted() -> None:
    old = _metadata(
        {
            "a.txt": _state(1),
            "b.txt": _state(2),
            "c.txt": _state(3),
            "d.txt": _state(4),
            "e.txt": _state(5),
            "f.txt": _state(6),
            "gone.txt": _state(7),
        }
    )
    new = {
        "a.txt": _state(1),
        "b.txt": _state(20),
        "c.txt": _state(3, minutes=5),
        "d.txt": _state(4),
        "e.txt": _state(5),
        "f.txt": _state(6),
        "sub/new.txt": _state(8),
    }

    changed = ChangeSetCalculator().diff(old, new)

    assert changed == ["b.txt", "c.txt", "sub/new.txt"]


def test_is_unchanged_detects_deletions_by_count() -> None:
    old = _metadata({"a.txt": _state(1), "b.txt": _state(2)})

    calculator = ChangeSetCalculator()

    assert calculator.is_unchanged(old, {"a.txt": _state(1), "b.txt": _state(2)})
    assert not calculator.is_unchanged(old, {"a.txt": _state(1)})
    assert not calculator.is_unchanged(old, {"a.txt": _state(1), "b.txt": _state(2, 1)})


def test_hash_comparer_flags_same_size_and_time_with_new_content() -> None:
    old = _metadata({"a.txt": _state(1, digest="aaa"), "b.txt": _state(1)})
    new = {"a.txt": _state(1, digest="bbb"), "b.txt": _state(1, digest="ccc")}

    assert ChangeSetCalculator().diff(old, new) == []
    assert ChangeSetCalculator(HashComparer()).diff(old, new) == ["a.txt"]
