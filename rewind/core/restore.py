from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterable
from pathlib import Path

from .archive_name import ArchiveKind, archive_kind, archive_sort_key, list_archives
from .archiver_client import ArchiverMode
from .backup_config import ArchiveSettings, RestoreMode
from .errors import ArchiverProcessError, RestoreChainIncompleteError
from .file_scanner import normalize_key
from .protocols import ArchiverProtocol

logger = logging.getLogger(__name__)

INCREMENTAL_TYPES = ("incremental", "smart")


class RestoreService:
    def __init__(self, archiver: ArchiverProtocol) -> None:
        self._archiver = archiver

    def build_chain(
        self,
        backup_dir: Path,
        target_file: Path,
        backup_type: str = "",
    ) -> list[Path]:
        """Return the archives to extract, base first, ending with ``target_file``."""
        incremental = (
            backup_type.strip().lower() in INCREMENTAL_TYPES
            or archive_kind(target_file) is ArchiveKind.SMART
        )
        if not incremental:
            return [target_file]

        target_time = archive_sort_key(target_file)[0]
        archives = list_archives(backup_dir, target_file.suffix)
        bases = [
            archive
            for archive in archives
            if archive_kind(archive) is ArchiveKind.FULL
            and archive_sort_key(archive)[0] <= target_time
        ]
        if not bases:
            raise RestoreChainIncompleteError(
                f"No full backup precedes {target_file.name} in {backup_dir}"
            )

        base = bases[-1]
        base_time = archive_sort_key(base)[0]
        increments = sorted(
            (
                archive
                for archive in archives
                if archive_kind(archive) is ArchiveKind.SMART
                and base_time <= archive_sort_key(archive)[0] <= target_time
            ),
            key=archive_sort_key,
        )

        chain = [base]
        seen = {base.name}
        for archive in increments:
            if archive.name not in seen:
                seen.add(archive.name)
                chain.append(archive)
        if target_file.name not in seen:
            chain.append(target_file)
        return chain

    def apply_chain(
        self,
        chain: list[Path],
        target_dir: Path,
        mode: RestoreMode,
        settings: ArchiveSettings,
        whitelist: Iterable[str] = (),
    ) -> None:
        if mode is RestoreMode.CLEAN:
            self.clean_directory(target_dir, whitelist)
        target_dir.mkdir(parents=True, exist_ok=True)

        for archive in chain:
            logger.info("Restoring layer %s into %s", archive.name, target_dir)
            result = self._archiver.run_archiver(
                ArchiverMode.EXTRACT,
                target_dir,
                archive,
                settings,
            )
            if not result:
                raise ArchiverProcessError(
                    f"Extracting {archive.name} failed", exit_code=result.exit_code
                )

    def clean_directory(self, target_dir: Path, whitelist: Iterable[str] = ()) -> None:
        if not target_dir.is_dir():
            return
        protected = self._protected_keys(target_dir, whitelist)
        logger.info("Clearing %s before restore", target_dir)
        try:
            self._clean(target_dir, "", protected)
        except OSError as exc:
            logger.warning("Clearing %s failed, continuing with overwrite: %s", target_dir, exc)

    def _clean(self, directory: Path, prefix: str, protected: set[str]) -> None:
        for entry in directory.iterdir():
            rel_path = f"{prefix}{entry.name}"
            key = normalize_key(rel_path)
            if key in protected:
                continue
            is_dir = entry.is_dir() and not entry.is_symlink()
            if is_dir and any(item.startswith(key + "/") for item in protected):
                self._clean(entry, rel_path + "/", protected)
                continue
            if is_dir:
                shutil.rmtree(entry)
            else:
                entry.unlink()

    def _protected_keys(self, target_dir: Path, whitelist: Iterable[str]) -> set[str]:
        keys: set[str] = set()
        root = os.path.abspath(target_dir)
        for raw in whitelist:
            text = raw.strip()
            if not text:
                continue
            if os.path.isabs(text):
                relative = os.path.relpath(os.path.abspath(text), root)
                if relative.startswith(".."):
                    continue
                text = relative
            keys.add(normalize_key(text.replace("\\", "/").strip("/")))
        return keys
