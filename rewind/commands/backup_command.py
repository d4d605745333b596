from __future__ import annotations

from ..core.backup_config import BackupConfig
from ..core.backup_engine import BackupEngine, TaskState
from ..core.log_setup import run_log
from ..core.protocols import ClockProtocol
from .base import Command, select_folders


class BackupCommand(Command):
    def __init__(
        self,
        config: BackupConfig,
        engine: BackupEngine,
        clock: ClockProtocol,
        *,
        folder: str | None = None,
        comment: str = "",
    ) -> None:
        self._config = config
        self._engine = engine
        self._clock = clock
        self._folder = folder
        self._comment = comment

    def run(self) -> int:
        folders = select_folders(self._config, self._folder)
        log_file = self._config.report_dir / f"backup-{self._clock.timestamp()}.log"

        print(f"Starting backup at {self._clock.now_iso()}")
        print(f"Destination: {self._config.require_destination()}")
        print(f"Mode: {self._config.archive.mode.value}")

        with run_log(log_file):
            batch = self._engine.backup_all(folders, self._comment)

        for outcome in batch.outcomes:
            if outcome.state is TaskState.SUCCEEDED:
                print(f"  {outcome.folder_name}: {outcome.backup_type} -> {outcome.file_name}")
            elif outcome.state is TaskState.NO_CHANGES:
                print(f"  {outcome.folder_name}: no changes")
            else:
                print(f"  {outcome.folder_name}: FAILED ({outcome.error})")

        print(f"Backup completed at {self._clock.now_iso()}")
        print(f"Log written: {log_file}")
        return 0 if batch.ok else 1
