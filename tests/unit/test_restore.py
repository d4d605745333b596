from __future__ import annotations

import zipfile
from datetime import datetime
from pathlib import Path

import pytest

from rewind.core.archive_name import ArchiveKind, ArchiveName
from rewind.core.archiver_client import ArchiverMode
from rewind.core.backup_config import ArchiveSettings, RestoreMode
from rewind.core.errors import ArchiverProcessError, RestoreChainIncompleteError
from rewind.core.restore import RestoreService
from tests.conftest import FakeArchiver, tree_contents, write_file


def _archive(directory: Path, kind: ArchiveKind, minute: int, files: dict[str, str]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    name = ArchiveName.build(kind, "World", "zip", datetime(2026, 2, 16, 10, minute))
    path = directory / name.file_name
    with zipfile.ZipFile(path, "w") as archive:
        for rel_path, text in files.items():
            archive.writestr(rel_path, text)
    return path


def test_full_target_is_its_own_chain(tmp_path: Path, fake_archiver: FakeArchiver) -> None:
    full = _archive(tmp_path, ArchiveKind.FULL, 0, {})
    _archive(tmp_path, ArchiveKind.SMART, 1, {})

    assert RestoreService(fake_archiver).build_chain(tmp_path, full) == [full]


def test_chain_uses_nearest_full_and_every_smart_up_to_target(
    tmp_path: Path,
    fake_archiver: FakeArchiver,
) -> None:
    _archive(tmp_path, ArchiveKind.FULL, 0, {})
    _archive(tmp_path, ArchiveKind.SMART, 1, {})
    full2 = _archive(tmp_path, ArchiveKind.FULL, 2, {})
    smart3 = _archive(tmp_path, ArchiveKind.SMART, 3, {})
    smart4 = _archive(tmp_path, ArchiveKind.SMART, 4, {})
    _archive(tmp_path, ArchiveKind.SMART, 5, {})
    _archive(tmp_path, ArchiveKind.OVERWRITE, 4, {})

    chain = RestoreService(fake_archiver).build_chain(tmp_path, smart4)

    assert chain == [full2, smart3, smart4]


def test_chain_for_n_increments_after_one_full(
    tmp_path: Path,
    fake_archiver: FakeArchiver,
) -> None:
    full = _archive(tmp_path, ArchiveKind.FULL, 0, {})
    smarts = [_archive(tmp_path, ArchiveKind.SMART, minute, {}) for minute in range(1, 6)]

    service = RestoreService(fake_archiver)

    for index, smart in enumerate(smarts):
        assert service.build_chain(tmp_path, smart) == [full, *smarts[: index + 1]]


def test_backup_type_hint_marks_target_incremental(
    tmp_path: Path,
    fake_archiver: FakeArchiver,
) -> None:
    full = _archive(tmp_path, ArchiveKind.FULL, 0, {})
    # no name grammar, so only the history type says this is an increment
    legacy = tmp_path / "legacy-increment.zip"
    legacy.write_bytes(b"")

    chain = RestoreService(fake_archiver).build_chain(tmp_path, legacy, "Incremental")

    assert chain == [full, legacy]


def test_chain_without_full_base_is_rejected(
    tmp_path: Path,
    fake_archiver: FakeArchiver,
) -> None:
    smart = _archive(tmp_path, ArchiveKind.SMART, 1, {})
    _archive(tmp_path, ArchiveKind.FULL, 2, {})

    with pytest.raises(RestoreChainIncompleteError):
        RestoreService(fake_archiver).build_chain(tmp_path, smart)


def test_apply_chain_layers_archives_in_order(
    tmp_path: Path,
    fake_archiver: FakeArchiver,
) -> None:
    archives = tmp_path / "archives"
    full = _archive(archives, ArchiveKind.FULL, 0, {"a.txt": "a1", "b.txt": "b1"})
    smart = _archive(archives, ArchiveKind.SMART, 1, {"a.txt": "a2"})
    target = tmp_path / "target"
    write_file(target / "stray.txt", "x")

    RestoreService(fake_archiver).apply_chain(
        [full, smart], target, RestoreMode.OVERWRITE, ArchiveSettings(format="zip")
    )

    assert tree_contents(target) == {"a.txt": "a2", "b.txt": "b1", "stray.txt": "x"}


def test_clean_restore_wipes_target_except_whitelist(
    tmp_path: Path,
    fake_archiver: FakeArchiver,
) -> None:
    full = _archive(tmp_path / "archives", ArchiveKind.FULL, 0, {"level.dat": "restored"})
    target = tmp_path / "target"
    write_file(target / "stray.txt", "x")
    write_file(target / "old" / "junk.bin", "x")
    write_file(target / "config" / "keep.json", "mine")
    write_file(target / "config" / "drop.json", "x")
    write_file(target / "options.txt", "mine")

    RestoreService(fake_archiver).apply_chain(
        [full],
        target,
        RestoreMode.CLEAN,
        ArchiveSettings(format="zip"),
        whitelist=["config/keep.json", str(target / "options.txt"), "  "],
    )

    assert tree_contents(target) == {
        "config/keep.json": "mine",
        "level.dat": "restored",
        "options.txt": "mine",
    }


def test_failed_extraction_aborts_chain(tmp_path: Path, fake_archiver: FakeArchiver) -> None:
    full = _archive(tmp_path / "archives", ArchiveKind.FULL, 0, {"a.txt": "1"})
    smart = _archive(tmp_path / "archives", ArchiveKind.SMART, 1, {"a.txt": "2"})
    later = _archive(tmp_path / "archives", ArchiveKind.SMART, 2, {"a.txt": "3"})
    fake_archiver.fail_on.add((ArchiverMode.EXTRACT, smart.name))

    with pytest.raises(ArchiverProcessError):
        RestoreService(fake_archiver).apply_chain(
            [full, smart, later], tmp_path / "target", RestoreMode.OVERWRITE, ArchiveSettings()
        )

    assert [call["archive"] for call in fake_archiver.calls] == [full.name, smart.name]
