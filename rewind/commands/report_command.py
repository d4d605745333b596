from __future__ import annotations

from ..core.archive_name import archive_kind, list_archives
from ..core.backup_config import BackupConfig, FolderDescriptor
from ..core.metadata_store import MetadataStore
from ..core.protocols import ClockProtocol, HistoryProtocol
from .base import Command


class ReportCommand(Command):
    def __init__(
        self,
        config: BackupConfig,
        clock: ClockProtocol,
        history: HistoryProtocol,
        metadata_store: MetadataStore | None = None,
    ) -> None:
        self._config = config
        self._clock = clock
        self._history = history
        self._metadata_store = metadata_store or MetadataStore()

    def run(self) -> int:
        report_file = self._config.report_dir / f"report-{self._clock.timestamp()}.txt"
        lines: list[str] = [
            "Backup report",
            f"Generated: {self._clock.now_iso()}",
            f"Destination: {self._config.require_destination()}",
            f"Mode: {self._config.archive.mode.value} (keep {self._config.archive.keep_count or 'all'})",
            "",
        ]
        for folder in self._config.folders:
            lines.extend(self._folder_section(folder))
            lines.append("")

        report_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
        print(f"Report written: {report_file}")
        return 0

    def _folder_section(self, folder: FolderDescriptor) -> list[str]:
        archive_dir = self._config.archive_dir(folder)
        lines = [f"[{folder.display_name}] {folder.path}"]

        metadata = self._metadata_store.load(self._config.metadata_dir(folder))
        if metadata is None:
            lines.append("Metadata: none (next incremental backup runs as full)")
        else:
            last_ok = (archive_dir / metadata.last_backup_file_name).is_file()
            base_ok = (archive_dir / metadata.based_on_full_backup).is_file()
            status = "ok" if last_ok and base_ok else "BROKEN"
            lines.extend(
                [
                    f"Metadata: {status}, {len(metadata.file_states)} files tracked",
                    f"- last backup: {metadata.last_backup_file_name}",
                    f"- chain base:  {metadata.based_on_full_backup}",
                ]
            )

        archives = list_archives(archive_dir, self._config.archive.format)
        lines.append(f"Archives ({len(archives)})")
        if not archives:
            lines.append("(none)")
        for archive in archives:
            kind = archive_kind(archive)
            flag = " *important*" if self._history.is_important(folder.display_name, archive.name) else ""
            lines.append(
                f"{archive.stat().st_size:>12} {kind.value if kind else '?':<9} "
                f"{archive.name}{flag}"
            )
        return lines
