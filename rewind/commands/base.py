from __future__ import annotations

from abc import ABC, abstractmethod

from ..core.backup_config import BackupConfig, FolderDescriptor


class Command(ABC):
    @abstractmethod
    def run(self) -> int:
        raise NotImplementedError


def select_folders(config: BackupConfig, name: str | None) -> list[FolderDescriptor]:
    if not name:
        return list(config.folders)
    folder = config.find_folder(name)
    if folder is None:
        known = ", ".join(item.display_name for item in config.folders)
        raise SystemExit(f"Unknown folder: {name} (configured: {known})")
    return [folder]
