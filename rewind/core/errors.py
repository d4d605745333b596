from __future__ import annotations


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class SourceMissingError(BackupError):
    """Raised when the folder to back up does not exist."""


class DestinationUnsetError(BackupError):
    """Raised when no destination root is configured."""


class ArchiverNotFoundError(BackupError):
    """Raised when no 7-Zip compatible executable can be located."""


class ArchiverProcessError(BackupError):
    """Raised when the archiver exits with a non-zero code or cannot start."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class MetadataCorruptError(BackupError):
    """Raised when a metadata snapshot cannot be decoded."""


class ChainBrokenError(BackupError):
    """Raised when an incremental chain no longer references existing archives."""


class MergeFailedError(BackupError):
    """Raised when merging an archive forward during safe delete fails."""


class RestoreChainIncompleteError(BackupError):
    """Raised when no full backup can serve as the base of a restore chain."""


__all__ = [
    "ArchiverNotFoundError",
    "ArchiverProcessError",
    "BackupError",
    "ChainBrokenError",
    "DestinationUnsetError",
    "MergeFailedError",
    "MetadataCorruptError",
    "RestoreChainIncompleteError",
    "SourceMissingError",
]
