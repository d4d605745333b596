from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path

from .archive_name import ArchiveKind, ArchiveName, archive_kind, list_archives
from .archiver_client import ArchiverMode
from .backup_config import BackupConfig, BackupMode, FolderDescriptor, RestoreMode
from .blacklist import Blacklist
from .change_set import ChangeSetCalculator
from .clock import Clock
from .errors import (
    ArchiverProcessError,
    BackupError,
    ChainBrokenError,
    RestoreChainIncompleteError,
    SourceMissingError,
)
from .file_scanner import FileScanner, FileState
from .metadata_store import BackupMetadata, MetadataStore
from .protocols import ArchiverProtocol, ClockProtocol, FileScannerProtocol, HistoryProtocol
from .restore import RestoreService
from .retention import PruneSummary, RetentionManager
from .type_rules import group_rules, partition

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    IDLE = "Idle"
    PREPARING = "Preparing"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    NO_CHANGES = "NoChanges"
    FAILED = "Failed"


@dataclass
class BackupTask:
    folder_name: str
    state: TaskState = TaskState.IDLE
    progress: int = 0
    status_text: str = ""

    @property
    def is_completed(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.NO_CHANGES, TaskState.FAILED)

    def update(self, state: TaskState, status_text: str, progress: int | None = None) -> None:
        self.state = state
        self.status_text = status_text
        if progress is not None:
            self.progress = progress


@dataclass
class BackupOutcome:
    folder_name: str
    state: TaskState
    file_name: str | None = None
    backup_type: str | None = None
    error: BackupError | None = None

    @property
    def ok(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.NO_CHANGES)

    @property
    def had_changes(self) -> bool:
        return self.state is TaskState.SUCCEEDED and bool(self.file_name)


@dataclass
class BatchOutcome:
    outcomes: list[BackupOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def had_changes(self) -> bool:
        return any(outcome.had_changes for outcome in self.outcomes)


@dataclass
class RestoreOutcome:
    folder_name: str
    archive_name: str
    chain: list[str] = field(default_factory=list)
    error: BackupError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class _Produced:
    file_name: str
    kind: ArchiveKind


class BackupEngine:
    def __init__(
        self,
        config: BackupConfig,
        archiver: ArchiverProtocol,
        *,
        clock: ClockProtocol | None = None,
        scanner: FileScannerProtocol | None = None,
        metadata_store: MetadataStore | None = None,
        change_set: ChangeSetCalculator | None = None,
        history: HistoryProtocol | None = None,
        retention: RetentionManager | None = None,
        restore_service: RestoreService | None = None,
        temp_dir: Path | None = None,
    ) -> None:
        self._config = config
        self._archiver = archiver
        self._clock = clock or Clock()
        self._scanner = scanner or FileScanner()
        self._metadata_store = metadata_store or MetadataStore()
        self._change_set = change_set or ChangeSetCalculator()
        self._history = history
        self._temp_dir = temp_dir
        self._retention = retention or RetentionManager(
            archiver,
            history=history,
            metadata_store=self._metadata_store,
            merge_timeout=config.merge_timeout,
            scratch_root=temp_dir,
        )
        self._restore = restore_service or RestoreService(archiver)
        self.active_tasks: list[BackupTask] = []

    # ------------------------------------------------------------------
    # public API

    def backup_all(
        self,
        folders: Iterable[FolderDescriptor] | None = None,
        comment: str = "",
    ) -> BatchOutcome:
        selected = list(self._config.folders if folders is None else folders)
        logger.info("=== Backing up %d folder(s) ===", len(selected))
        batch = BatchOutcome()
        for folder in selected:
            batch.outcomes.append(self.backup_folder(folder, comment))
        logger.info("=== Backup run finished (changes: %s) ===", batch.had_changes)
        return batch

    def backup_folder(
        self,
        folder: FolderDescriptor,
        comment: str = "",
        *,
        prune: bool = True,
        mode: BackupMode | None = None,
    ) -> BackupOutcome:
        mode = mode or self._config.archive.mode
        task = BackupTask(folder.display_name, TaskState.PREPARING, "Preparing")
        self.active_tasks.insert(0, task)
        try:
            archive_dir, meta_dir = self._prepare(folder)
            task.update(TaskState.RUNNING, "Backing up", progress=10)
            logger.info("Backing up %s (%s mode)", folder.display_name, mode.value)

            if mode is BackupMode.INCREMENTAL:
                produced = self._smart_backup(folder, archive_dir, meta_dir, comment)
            elif mode is BackupMode.OVERWRITE:
                produced = self._overwrite_backup(folder, archive_dir, meta_dir, comment)
            else:
                produced = self._full_backup(folder, archive_dir, meta_dir, comment)
        except BackupError as exc:
            return self._failed(task, exc)
        except OSError as exc:
            return self._failed(task, BackupError(f"Filesystem error: {exc}"))

        if produced is None:
            task.update(TaskState.NO_CHANGES, "No changes", progress=100)
            logger.info("Skipped %s: no file changes", folder.display_name)
            return BackupOutcome(folder.display_name, TaskState.NO_CHANGES)

        task.update(TaskState.SUCCEEDED, "Completed", progress=100)
        logger.info("Backup of %s completed: %s", folder.display_name, produced.file_name)
        if self._history is not None:
            self._history.add_entry(
                folder.display_name, produced.file_name, produced.kind.value, comment
            )
        if prune:
            self._prune(folder, archive_dir, meta_dir)
        return BackupOutcome(
            folder.display_name,
            TaskState.SUCCEEDED,
            file_name=produced.file_name,
            backup_type=produced.kind.value,
        )

    def prune_folder(self, folder: FolderDescriptor) -> PruneSummary | None:
        return self._prune(folder, self._config.archive_dir(folder), self._config.metadata_dir(folder))

    def restore(
        self,
        folder: FolderDescriptor,
        archive_name: str,
        mode: RestoreMode = RestoreMode.CLEAN,
        backup_type: str = "",
    ) -> RestoreOutcome:
        outcome = RestoreOutcome(folder.display_name, archive_name)
        settings = self._config.archive
        try:
            archive_dir = self._config.archive_dir(folder)
            archive_path = archive_dir / archive_name
            if not archive_path.is_file():
                raise RestoreChainIncompleteError(f"Backup file not found: {archive_path}")
            chain = self._restore.build_chain(archive_dir, archive_path, backup_type)
            outcome.chain = [item.name for item in chain]

            if settings.backup_before_restore:
                logger.info("Backing up %s before restoring", folder.display_name)
                # chain members must survive untouched until extraction
                safety_mode = BackupMode.FULL if settings.mode is BackupMode.OVERWRITE else None
                safety = self.backup_folder(
                    folder, comment="Before restore", prune=False, mode=safety_mode
                )
                if not safety.ok:
                    raise BackupError(f"Backup before restore failed: {safety.error}")

            logger.info("=== Restoring %s from %s ===", folder.display_name, archive_name)
            logger.info("Restore chain: %s", ", ".join(outcome.chain))
            self._restore.apply_chain(
                chain,
                folder.path,
                mode,
                settings,
                self._config.filters.restore_whitelist,
            )
        except BackupError as exc:
            logger.error("Restore of %s failed: %s", folder.display_name, exc)
            outcome.error = exc
            return outcome
        except OSError as exc:
            logger.error("Restore of %s failed: %s", folder.display_name, exc)
            outcome.error = BackupError(f"Filesystem error: {exc}")
            return outcome

        logger.info("Restore of %s completed", folder.display_name)
        return outcome

    # ------------------------------------------------------------------
    # modes

    def _full_backup(
        self,
        folder: FolderDescriptor,
        archive_dir: Path,
        meta_dir: Path,
        comment: str,
        *,
        track_metadata: bool = True,
        allow_skip: bool = True,
    ) -> _Produced | None:
        settings = self._config.archive
        states = self._scanner.scan(folder.path, self._config.filters)

        if track_metadata and allow_skip and settings.skip_if_unchanged:
            previous = self._metadata_store.load(meta_dir)
            if previous is not None:
                last_file = archive_dir / previous.last_backup_file_name
                if not last_file.is_file():
                    logger.warning(
                        "Last backup %s is missing, running full backup unconditionally",
                        previous.last_backup_file_name,
                    )
                elif self._change_set.is_unchanged(previous, states):
                    return None

        name = self._new_name(ArchiveKind.FULL, folder, archive_dir, comment)
        archive_path = archive_dir / name
        logger.info("Creating full backup %s", name)
        paths = sorted(states) if Blacklist(folder.path, self._config.filters).has_regex else None
        self._create_archive(folder.path, archive_path, paths, states)

        if track_metadata:
            self._save_metadata(meta_dir, name, name, states)
        return _Produced(name, ArchiveKind.FULL)

    def _smart_backup(
        self,
        folder: FolderDescriptor,
        archive_dir: Path,
        meta_dir: Path,
        comment: str,
    ) -> _Produced | None:
        previous = self._metadata_store.load(meta_dir)
        if previous is None:
            logger.info("No baseline metadata for %s, running full backup", folder.display_name)
            return self._full_backup(folder, archive_dir, meta_dir, comment, allow_skip=False)

        try:
            self._check_chain(archive_dir, previous)
        except ChainBrokenError as exc:
            logger.warning("%s, running full backup", exc)
            return self._full_backup(folder, archive_dir, meta_dir, comment, allow_skip=False)

        if self._chain_limit_reached(archive_dir):
            logger.info(
                "Incremental chain reached %d backup(s), running full backup",
                self._config.archive.max_smart_backups_per_full,
            )
            return self._full_backup(folder, archive_dir, meta_dir, comment)

        logger.info("Comparing %s against the last snapshot", folder.display_name)
        states = self._scanner.scan(folder.path, self._config.filters)
        changed = self._change_set.diff(previous, states)
        if not changed:
            return None
        logger.info("Detected %d changed file(s)", len(changed))

        name = self._new_name(ArchiveKind.SMART, folder, archive_dir, comment)
        self._create_archive(folder.path, archive_dir / name, changed, states)
        self._save_metadata(meta_dir, name, previous.based_on_full_backup, states)
        return _Produced(name, ArchiveKind.SMART)

    def _overwrite_backup(
        self,
        folder: FolderDescriptor,
        archive_dir: Path,
        meta_dir: Path,
        comment: str,
    ) -> _Produced | None:
        settings = self._config.archive
        existing = list_archives(archive_dir, settings.format)
        if not existing:
            logger.info("No existing archive for %s, running full backup", folder.display_name)
            return self._full_backup(
                folder, archive_dir, meta_dir, comment, track_metadata=False
            )

        target = max(existing, key=lambda item: item.stat().st_mtime)
        logger.info("Updating %s in place", target.name)
        blacklist = Blacklist(folder.path, self._config.filters)
        if blacklist.has_regex:
            states = self._scanner.scan(folder.path, self._config.filters)
            with self._list_file(sorted(states)) as list_file:
                result = self._archiver.run_archiver(
                    ArchiverMode.UPDATE,
                    folder.path,
                    target,
                    settings,
                    list_file=list_file,
                    filters=self._config.filters,
                )
        else:
            result = self._archiver.run_archiver(
                ArchiverMode.UPDATE,
                folder.path,
                target,
                settings,
                filters=self._config.filters,
            )
        if not result:
            raise ArchiverProcessError(f"Updating {target.name} failed", exit_code=result.exit_code)

        new_name = self._refreshed_name(target, folder, comment)
        if new_name != target.name:
            try:
                target.rename(target.with_name(new_name))
                logger.info("Renamed %s to %s", target.name, new_name)
            except OSError as exc:
                logger.warning("Could not rename %s, keeping old name: %s", target.name, exc)
                new_name = target.name
            else:
                if self._history is not None:
                    self._history.rename_entry(folder.display_name, target.name, new_name)
        return _Produced(new_name, ArchiveKind.OVERWRITE)

    # ------------------------------------------------------------------
    # helpers

    def _prepare(self, folder: FolderDescriptor) -> tuple[Path, Path]:
        archive_dir = self._config.archive_dir(folder)
        meta_dir = self._config.metadata_dir(folder)
        if not folder.path.is_dir():
            raise SourceMissingError(f"Source folder does not exist: {folder.path}")
        archive_dir.mkdir(parents=True, exist_ok=True)
        meta_dir.mkdir(parents=True, exist_ok=True)
        return archive_dir, meta_dir

    def _failed(self, task: BackupTask, error: BackupError) -> BackupOutcome:
        task.update(TaskState.FAILED, "Failed", progress=100)
        logger.error("Backup of %s failed: %s", task.folder_name, error)
        return BackupOutcome(task.folder_name, TaskState.FAILED, error=error)

    def _check_chain(self, archive_dir: Path, metadata: BackupMetadata) -> None:
        for reference in (metadata.last_backup_file_name, metadata.based_on_full_backup):
            if not reference or not (archive_dir / reference).is_file():
                raise ChainBrokenError(f"Incremental chain is broken: {reference or '?'} is missing")

    def _chain_limit_reached(self, archive_dir: Path) -> bool:
        limit = self._config.archive.max_smart_backups_per_full
        if limit <= 0:
            return False
        increments = 0
        for archive in reversed(list_archives(archive_dir, self._config.archive.format)):
            kind = archive_kind(archive)
            if kind is ArchiveKind.FULL:
                return increments >= limit
            if kind is ArchiveKind.SMART:
                increments += 1
        return True

    def _new_name(
        self,
        kind: ArchiveKind,
        folder: FolderDescriptor,
        archive_dir: Path,
        comment: str,
    ) -> str:
        when = self._clock.now()
        name = ArchiveName.build(kind, folder.display_name, self._config.archive.format, when, comment)
        # two runs inside one second must not append into the same archive
        while (archive_dir / name.file_name).exists():
            when += timedelta(seconds=1)
            name = name.with_timestamp(when)
        return name.file_name

    def _refreshed_name(self, target: Path, folder: FolderDescriptor, comment: str) -> str:
        now: datetime = self._clock.now()
        parsed = ArchiveName.parse(target.name)
        if parsed is not None:
            return parsed.with_timestamp(now).file_name
        return ArchiveName.build(
            ArchiveKind.OVERWRITE,
            folder.display_name,
            self._config.archive.format,
            now,
            comment,
        ).file_name

    def _create_archive(
        self,
        source: Path,
        archive_path: Path,
        paths: list[str] | None,
        states: Mapping[str, FileState],
    ) -> None:
        try:
            if paths is None:
                self._compress_tree(source, archive_path, states)
            else:
                self._compress_list(source, archive_path, paths)
        except BaseException:
            if archive_path.exists():
                logger.warning("Removing incomplete archive %s", archive_path.name)
                archive_path.unlink()
            raise

    def _compress_tree(
        self,
        source: Path,
        archive_path: Path,
        states: Mapping[str, FileState],
    ) -> None:
        groups = group_rules(self._config.archive.file_type_rules)
        split = bool(groups)
        self._run_add(
            source,
            archive_path,
            exclude_patterns=[pattern for group in groups for pattern in group.patterns],
            solid=False if split else None,
        )
        for group in groups:
            if not any(group.matches(path) for path in states):
                continue
            self._run_add(
                source,
                archive_path,
                include_patterns=group.patterns,
                level=group.level,
                solid=False,
            )

    def _compress_list(self, source: Path, archive_path: Path, paths: list[str]) -> None:
        rules = self._config.archive.file_type_rules
        main, by_level = partition(paths, rules)
        split = bool(rules)
        if main:
            with self._list_file(main) as list_file:
                self._run_add(source, archive_path, list_file=list_file, solid=False if split else None)
        for level, files in by_level:
            with self._list_file(files) as list_file:
                self._run_add(source, archive_path, list_file=list_file, level=level, solid=False)

    def _run_add(
        self,
        source: Path,
        archive_path: Path,
        *,
        list_file: Path | None = None,
        exclude_patterns: Sequence[str] = (),
        include_patterns: Sequence[str] = (),
        level: int | None = None,
        solid: bool | None = None,
    ) -> None:
        result = self._archiver.run_archiver(
            ArchiverMode.ADD,
            source,
            archive_path,
            self._config.archive,
            list_file=list_file,
            filters=self._config.filters,
            exclude_patterns=exclude_patterns,
            include_patterns=include_patterns,
            level=level,
            solid=solid,
        )
        if not result:
            raise ArchiverProcessError(
                f"Archiver failed while writing {archive_path.name}",
                exit_code=result.exit_code,
            )

    def _list_file(self, paths: list[str]) -> _ListFile:
        return _ListFile(paths, self._temp_dir)

    def _save_metadata(
        self,
        meta_dir: Path,
        file_name: str,
        base_name: str,
        states: Mapping[str, FileState],
    ) -> None:
        self._metadata_store.save(
            meta_dir,
            BackupMetadata(
                last_backup_file_name=file_name,
                based_on_full_backup=base_name,
                file_states=dict(states),
            ),
        )

    def _prune(
        self,
        folder: FolderDescriptor,
        archive_dir: Path,
        meta_dir: Path,
    ) -> PruneSummary | None:
        try:
            return self._retention.prune(
                archive_dir,
                self._config.archive,
                folder_name=folder.display_name,
                metadata_dir=meta_dir,
            )
        except (BackupError, OSError) as exc:
            logger.error("Pruning old archives of %s failed: %s", folder.display_name, exc)
            return None


class _ListFile:
    """Temporary archiver list file, one relative path per line."""

    def __init__(self, paths: list[str], directory: Path | None) -> None:
        self._paths = paths
        self._directory = directory
        self._path: Path | None = None

    def __enter__(self) -> Path:
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            suffix=".lst",
            prefix="rewind-",
            dir=self._directory,
            delete=False,
        )
        with handle:
            for path in self._paths:
                handle.write(path.replace("/", os.sep) + "\n")
        self._path = Path(handle.name)
        return self._path

    def __exit__(self, *exc_info: object) -> None:
        if self._path is not None:
            self._path.unlink(missing_ok=True)
