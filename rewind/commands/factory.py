from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..core.archiver_client import ArchiverClient, ArchiverLocator
from ..core.backup_config import BackupConfig, RestoreMode
from ..core.backup_engine import BackupEngine
from ..core.clock import Clock
from ..core.config_loader import ConfigLoader
from ..core.history import JsonHistory
from ..core.protocols import ArchiverProtocol, ClockProtocol, HistoryProtocol
from .backup_command import BackupCommand
from .base import Command
from .prune_command import PruneCommand
from .report_command import ReportCommand
from .restore_command import RestoreCommand


def default_archiver(config: BackupConfig) -> ArchiverProtocol:
    return ArchiverClient(ArchiverLocator(config.seven_zip_path, config.project_root))


def default_history(config: BackupConfig, clock: ClockProtocol | None = None) -> HistoryProtocol:
    return JsonHistory(config.history_file, clock)


class CommandFactory:
    def __init__(
        self,
        project_root: Path,
        *,
        config_loader: ConfigLoader | None = None,
        clock: ClockProtocol | None = None,
        archiver_factory: Callable[[BackupConfig], ArchiverProtocol] | None = None,
        history_factory: Callable[[BackupConfig], HistoryProtocol] | None = None,
    ) -> None:
        self._config_loader = config_loader or ConfigLoader(project_root)
        self._clock = clock or Clock()
        self._archiver_factory = archiver_factory or default_archiver
        self._history_factory = history_factory or self._default_history

    def _default_history(self, config: BackupConfig) -> HistoryProtocol:
        return default_history(config, self._clock)

    def create(self, action: str, env_file: str | None, **options: Any) -> Command:
        config = self._config_loader.load(env_file)
        history = self._history_factory(config)

        if action == "report":
            return ReportCommand(config, self._clock, history)

        engine = BackupEngine(
            config,
            self._archiver_factory(config),
            clock=self._clock,
            history=history,
        )
        if action == "backup":
            return BackupCommand(
                config,
                engine,
                self._clock,
                folder=options.get("folder"),
                comment=options.get("comment") or "",
            )
        if action == "restore":
            return RestoreCommand(
                config,
                engine,
                self._clock,
                folder=options["folder"],
                archive=options["archive"],
                mode=options.get("mode") or RestoreMode.CLEAN,
            )
        if action == "prune":
            return PruneCommand(config, engine, self._clock, folder=options.get("folder"))
        raise SystemExit(f"Unsupported action: {action}")
