from __future__ import annotations

from ..core.backup_config import BackupConfig, RestoreMode
from ..core.backup_engine import BackupEngine
from ..core.log_setup import run_log
from ..core.protocols import ClockProtocol
from .base import Command, select_folders


class RestoreCommand(Command):
    def __init__(
        self,
        config: BackupConfig,
        engine: BackupEngine,
        clock: ClockProtocol,
        *,
        folder: str,
        archive: str,
        mode: RestoreMode = RestoreMode.CLEAN,
    ) -> None:
        self._config = config
        self._engine = engine
        self._clock = clock
        self._folder = folder
        self._archive = archive
        self._mode = mode

    def run(self) -> int:
        folder = select_folders(self._config, self._folder)[0]
        log_file = self._config.report_dir / f"restore-{self._clock.timestamp()}.log"

        print(f"Restoring {folder.display_name} from {self._archive} at {self._clock.now_iso()}")
        print(f"Target: {folder.path} ({self._mode.value.lower()} mode)")

        with run_log(log_file):
            outcome = self._engine.restore(folder, self._archive, self._mode)

        if not outcome.ok:
            print(f"Restore failed: {outcome.error}")
            print(f"Log written: {log_file}")
            return 1

        print(f"Restored {len(outcome.chain)} archive(s): {', '.join(outcome.chain)}")
        print(f"Log written: {log_file}")
        return 0
