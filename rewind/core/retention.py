from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .archive_name import ArchiveKind, ArchiveName, archive_kind, list_archives
from .archiver_client import ArchiverMode
from .backup_config import ArchiveSettings, BackupMode
from .errors import MergeFailedError
from .metadata_store import MetadataStore
from .protocols import ArchiverProtocol, HistoryProtocol

logger = logging.getLogger(__name__)

_SMART_TAG = re.compile(r"\[smart\]", re.IGNORECASE)


@dataclass
class PruneSummary:
    deleted: list[str] = field(default_factory=list)
    merged: list[str] = field(default_factory=list)
    promoted: list[tuple[str, str]] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped_reason: str = ""


class RetentionManager:
    def __init__(
        self,
        archiver: ArchiverProtocol,
        *,
        history: HistoryProtocol | None = None,
        metadata_store: MetadataStore | None = None,
        merge_timeout: float | None = 3600.0,
        scratch_root: Path | None = None,
    ) -> None:
        self._archiver = archiver
        self._history = history
        self._metadata_store = metadata_store or MetadataStore()
        self._merge_timeout = merge_timeout
        self._scratch_root = scratch_root

    def prune(
        self,
        dest_dir: Path,
        settings: ArchiveSettings,
        *,
        folder_name: str = "",
        metadata_dir: Path | None = None,
    ) -> PruneSummary:
        """Delete the oldest archives beyond ``settings.keep_count``.

        Uses ``format``, ``keep_count``, ``mode`` and ``safe_delete_enabled``
        from ``settings``; the rest is needed to re-pack merged archives.
        """
        summary = PruneSummary()
        keep_count = settings.keep_count
        if keep_count <= 0:
            summary.skipped_reason = "unlimited"
            return summary
        if settings.mode is BackupMode.INCREMENTAL and not settings.safe_delete_enabled:
            logger.info("Skipping prune of %s: incremental chain without safe delete", dest_dir)
            summary.skipped_reason = "incremental-without-safe-delete"
            return summary

        archives = list_archives(dest_dir, settings.format)
        important = self._important(folder_name, archives)
        if len(important) >= keep_count:
            logger.info(
                "Skipping prune of %s: %d important archives meet keep count %d",
                dest_dir,
                len(important),
                keep_count,
            )
            summary.skipped_reason = "important"
            return summary

        candidates = [archive for archive in archives if archive.name not in important]
        excess = len(candidates) - (keep_count - len(important))
        if excess <= 0:
            return summary

        logger.info("Pruning %d archive(s) from %s (keep %d)", excess, dest_dir, keep_count)
        failed: set[str] = set()
        for _ in range(excess):
            # promotion renames files, so re-read the listing for every deletion
            archives = list_archives(dest_dir, settings.format)
            important = self._important(folder_name, archives)
            candidates = [
                archive
                for archive in archives
                if archive.name not in important and archive.name not in failed
            ]
            if not candidates:
                break
            target = candidates[0]
            try:
                self.delete_archive(
                    target,
                    settings,
                    folder_name=folder_name,
                    metadata_dir=metadata_dir,
                    safe=settings.safe_delete_enabled,
                    summary=summary,
                )
            except MergeFailedError as exc:
                logger.error("Keeping %s, safe delete aborted: %s", target.name, exc)
                failed.add(target.name)
                summary.failed.append(target.name)
            except OSError as exc:
                logger.error("Could not delete %s: %s", target.name, exc)
                failed.add(target.name)
                summary.failed.append(target.name)
        return summary

    def delete_archive(
        self,
        archive: Path,
        settings: ArchiveSettings,
        *,
        folder_name: str = "",
        metadata_dir: Path | None = None,
        safe: bool = True,
        summary: PruneSummary | None = None,
    ) -> PruneSummary:
        summary = summary if summary is not None else PruneSummary()
        kind = archive_kind(archive)
        successor = self._successor(archive, settings.format) if safe else None

        if successor is None or not self._needs_merge(kind, successor):
            self._remove(archive, folder_name, summary)
            return summary

        logger.info("Merging %s forward into %s before deletion", archive.name, successor.name)
        self._merge_forward(archive, successor, settings)
        summary.merged.append(archive.name)
        self._remove(archive, folder_name, summary)

        if kind is ArchiveKind.FULL:
            new_name = self._promote(successor, archive.name, folder_name, metadata_dir)
            summary.promoted.append((successor.name, new_name))
        return summary

    def _needs_merge(self, kind: ArchiveKind | None, successor: Path) -> bool:
        next_kind = archive_kind(successor)
        if kind is ArchiveKind.SMART:
            return next_kind is not ArchiveKind.FULL
        if kind is ArchiveKind.FULL:
            return next_kind is ArchiveKind.SMART
        return False

    def _important(self, folder_name: str, archives: list[Path]) -> set[str]:
        if self._history is None:
            return set()
        return {
            archive.name
            for archive in archives
            if self._history.is_important(folder_name, archive.name)
        }

    def _successor(self, archive: Path, extension: str) -> Path | None:
        archives = list_archives(archive.parent, extension)
        names = [item.name for item in archives]
        if archive.name not in names:
            return None
        index = names.index(archive.name)
        if index + 1 >= len(archives):
            return None
        return archives[index + 1]

    def _merge_forward(self, archive: Path, successor: Path, settings: ArchiveSettings) -> None:
        original = successor.stat()
        scratch = Path(tempfile.mkdtemp(prefix="rewind-merge-", dir=self._scratch_root))
        try:
            # layer the successor over the deleted archive so its newer files win
            for layer in (archive, successor):
                extracted = self._archiver.run_archiver(
                    ArchiverMode.EXTRACT,
                    scratch,
                    layer,
                    settings,
                    timeout=self._merge_timeout,
                )
                if not extracted:
                    raise MergeFailedError(f"Could not extract {layer.name} for merging")

            added = self._archiver.run_archiver(
                ArchiverMode.ADD,
                scratch,
                successor,
                settings,
                timeout=self._merge_timeout,
            )
            if not added:
                raise MergeFailedError(f"Could not add merged content into {successor.name}")
            os.utime(successor, ns=(original.st_atime_ns, original.st_mtime_ns))
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    def _promote(
        self,
        successor: Path,
        replaced_name: str,
        folder_name: str,
        metadata_dir: Path | None,
    ) -> str:
        parsed = ArchiveName.parse(successor.name)
        if parsed is not None:
            new_name = parsed.with_kind(ArchiveKind.FULL).file_name
        else:
            new_name = _SMART_TAG.sub("[Full]", successor.name, count=1)
        successor.rename(successor.with_name(new_name))
        logger.info("Promoted %s to full backup %s", successor.name, new_name)

        if self._history is not None:
            self._history.rename_entry(
                folder_name, successor.name, new_name, ArchiveKind.FULL.value
            )
        if metadata_dir is not None:
            # the chain base now lives in the promoted archive
            for old_name in (replaced_name, successor.name):
                self._metadata_store.rename_reference(metadata_dir, old_name, new_name)
        return new_name

    def _remove(self, archive: Path, folder_name: str, summary: PruneSummary) -> None:
        archive.unlink()
        summary.deleted.append(archive.name)
        logger.info("Deleted old archive %s", archive.name)
        if self._history is not None:
            self._history.remove_entry(folder_name, archive.name)
