from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .errors import DestinationUnsetError


class BackupMode(str, Enum):
    FULL = "Full"
    INCREMENTAL = "Incremental"
    OVERWRITE = "Overwrite"


class RestoreMode(str, Enum):
    CLEAN = "Clean"
    OVERWRITE = "Overwrite"


@dataclass(frozen=True)
class FolderDescriptor:
    path: Path
    display_name: str


@dataclass(frozen=True)
class FileTypeRule:
    pattern: str
    compression_level: int


@dataclass
class ArchiveSettings:
    format: str = "7z"
    compression_level: int = 5
    method: str = "LZMA2"
    keep_count: int = 0
    mode: BackupMode = BackupMode.FULL
    password: str = ""
    cpu_threads: int = 0
    max_smart_backups_per_full: int = 0
    safe_delete_enabled: bool = True
    skip_if_unchanged: bool = True
    backup_before_restore: bool = False
    file_type_rules: list[FileTypeRule] = field(default_factory=list)


@dataclass
class FilterSettings:
    blacklist: list[str] = field(default_factory=list)
    use_regex: bool = False
    restore_whitelist: list[str] = field(default_factory=list)


@dataclass
class BackupConfig:
    project_root: Path
    env_file: Path
    destination: Path | None
    source_include_file: Path
    folders: list[FolderDescriptor]
    report_dir: Path
    history_file: Path
    archive: ArchiveSettings = field(default_factory=ArchiveSettings)
    filters: FilterSettings = field(default_factory=FilterSettings)
    seven_zip_path: str = ""
    merge_timeout: float = 3600.0

    def require_destination(self) -> Path:
        if self.destination is None or not str(self.destination).strip():
            raise DestinationUnsetError("Backup destination is not set")
        return self.destination

    def archive_dir(self, folder: FolderDescriptor) -> Path:
        return self.require_destination() / folder.display_name

    def metadata_dir(self, folder: FolderDescriptor) -> Path:
        return self.require_destination() / "_metadata" / folder.display_name

    def find_folder(self, name: str) -> FolderDescriptor | None:
        for folder in self.folders:
            if folder.display_name == name:
                return folder
        return None
