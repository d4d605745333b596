from __future__ import annotations

import json
from pathlib import Path

from rewind.core.history import JsonHistory
from tests.conftest import FixedClock


def test_add_entry_persists_and_replaces_same_file(tmp_path: Path) -> None:
    path = tmp_path / "_metadata" / "history.json"
    history = JsonHistory(path)

    history.add_entry("World", "a.7z", "Full", "first")
    history.add_entry("World", "b.7z", "Smart")
    history.add_entry("World", "a.7z", "Overwrite", "again")

    reloaded = JsonHistory(path)
    entries = reloaded.entries("World")
    assert [(item.file_name, item.backup_type, item.comment) for item in entries] == [
        ("b.7z", "Smart", ""),
        ("a.7z", "Overwrite", "again"),
    ]
    assert reloaded.entries("Other") == []


def test_rename_and_remove_entry(tmp_path: Path) -> None:
    history = JsonHistory(tmp_path / "history.json")
    history.add_entry("World", "[Smart]x.7z", "Smart")

    assert history.rename_entry("World", "[Smart]x.7z", "[Full]x.7z", "Full")
    assert not history.rename_entry("World", "missing.7z", "other.7z")
    assert [(item.file_name, item.backup_type) for item in history.entries()] == [
        ("[Full]x.7z", "Full")
    ]

    assert history.remove_entry("World", "[Full]x.7z")
    assert not history.remove_entry("World", "[Full]x.7z")
    assert history.entries() == []


def test_important_flag(tmp_path: Path) -> None:
    history = JsonHistory(tmp_path / "history.json")
    history.add_entry("World", "a.7z", "Full")

    assert not history.is_important("World", "a.7z")
    assert history.set_important("World", "a.7z", True)
    assert JsonHistory(tmp_path / "history.json").is_important("World", "a.7z")
    assert not history.is_important("Other", "a.7z")


def test_corrupt_history_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    path.write_text("[{broken", encoding="utf-8")

    history = JsonHistory(path)
    history.add_entry("World", "a.7z", "Full")

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert [item["file_name"] for item in payload] == ["a.7z"]


def test_replacing_an_entry_keeps_important_flag(tmp_path: Path) -> None:
    history = JsonHistory(tmp_path / "history.json")
    history.add_entry("World", "a.7z", "Overwrite")
    history.set_important("World", "a.7z", True)

    history.add_entry("World", "a.7z", "Overwrite", "refreshed")

    assert history.is_important("World", "a.7z")
    assert [item.comment for item in history.entries("World")] == ["refreshed"]


def test_entry_timestamp_comes_from_clock(tmp_path: Path, fixed_clock: FixedClock) -> None:
    history = JsonHistory(tmp_path / "history.json", fixed_clock)

    entry = history.add_entry("World", "a.7z", "Full")

    assert entry.timestamp == "2026-02-16T01:02:03"
