from __future__ import annotations

from ..core.backup_config import BackupConfig
from ..core.backup_engine import BackupEngine
from ..core.log_setup import run_log
from ..core.protocols import ClockProtocol
from .base import Command, select_folders


class PruneCommand(Command):
    def __init__(
        self,
        config: BackupConfig,
        engine: BackupEngine,
        clock: ClockProtocol,
        *,
        folder: str | None = None,
    ) -> None:
        self._config = config
        self._engine = engine
        self._clock = clock
        self._folder = folder

    def run(self) -> int:
        folders = select_folders(self._config, self._folder)
        settings = self._config.archive
        log_file = self._config.report_dir / f"prune-{self._clock.timestamp()}.log"

        print(f"Running prune at {self._clock.now_iso()}")
        print(
            "Policy: "
            f"keep={settings.keep_count} "
            f"mode={settings.mode.value} "
            f"safe_delete={'on' if settings.safe_delete_enabled else 'off'}"
        )

        exit_code = 0
        with run_log(log_file):
            for folder in folders:
                summary = self._engine.prune_folder(folder)
                if summary is None:
                    print(f"  {folder.display_name}: prune failed")
                    exit_code = 1
                    continue
                if summary.skipped_reason:
                    print(f"  {folder.display_name}: skipped ({summary.skipped_reason})")
                    continue
                print(f"  {folder.display_name}: deleted {len(summary.deleted)}")
                for old_name, new_name in summary.promoted:
                    print(f"    promoted {old_name} -> {new_name}")
                if summary.failed:
                    print(f"    kept after failed merge: {', '.join(summary.failed)}")
                    exit_code = 1

        print(f"Prune completed at {self._clock.now_iso()}")
        return exit_code
