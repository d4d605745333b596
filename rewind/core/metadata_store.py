from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import MetadataCorruptError
from .file_scanner import FileState

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
METADATA_VERSION = "1.0"


def atomic_write_text(path: Path, text: str) -> None:
    """Write through a temp file in the same directory and swap it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.stem}-",
        suffix=".tmp",
        delete=False,
    )
    try:
        with handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(handle.name, path)
    except BaseException:
        Path(handle.name).unlink(missing_ok=True)
        raise


def _parse_time(value: Any) -> datetime:
    if not isinstance(value, str):
        raise MetadataCorruptError(f"Expected timestamp string, got {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise MetadataCorruptError(f"Invalid timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class BackupMetadata:
    last_backup_file_name: str
    based_on_full_backup: str
    last_backup_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    file_states: dict[str, FileState] = field(default_factory=dict)
    version: str = METADATA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "Version": self.version,
            "LastBackupTime": self.last_backup_time.isoformat(),
            "LastBackupFileName": self.last_backup_file_name,
            "BasedOnFullBackup": self.based_on_full_backup,
            "FileStates": {
                rel_path: {
                    "Size": state.size,
                    "LastWriteTimeUtc": state.modified_utc.isoformat(),
                    "Hash": state.hash or "",
                }
                for rel_path, state in self.file_states.items()
            },
        }

    @classmethod
    def from_dict(cls, payload: Any) -> BackupMetadata:
        if not isinstance(payload, dict):
            raise MetadataCorruptError("Metadata payload is not an object")
        raw_states = payload.get("FileStates") or {}
        if not isinstance(raw_states, dict):
            raise MetadataCorruptError("FileStates is not an object")

        states: dict[str, FileState] = {}
        for rel_path, raw in raw_states.items():
            if not isinstance(raw, dict):
                raise MetadataCorruptError(f"Invalid file state for {rel_path!r}")
            try:
                size = int(raw["Size"])
            except (KeyError, TypeError, ValueError) as exc:
                raise MetadataCorruptError(f"Invalid size for {rel_path!r}") from exc
            states[rel_path] = FileState(
                size=size,
                modified_utc=_parse_time(raw.get("LastWriteTimeUtc")),
                hash=raw.get("Hash") or None,
            )

        last_file = payload.get("LastBackupFileName")
        base_file = payload.get("BasedOnFullBackup")
        if not isinstance(last_file, str) or not isinstance(base_file, str):
            raise MetadataCorruptError("Missing backup file references")
        return cls(
            last_backup_file_name=last_file,
            based_on_full_backup=base_file,
            last_backup_time=_parse_time(payload.get("LastBackupTime")),
            file_states=states,
            version=str(payload.get("Version", METADATA_VERSION)),
        )


class MetadataStore:
    def path_for(self, meta_dir: Path) -> Path:
        return meta_dir / METADATA_FILE

    def load(self, meta_dir: Path) -> BackupMetadata | None:
        """Return the stored snapshot, or ``None`` when there is no usable baseline."""
        path = self.path_for(meta_dir)
        if not path.is_file():
            logger.info("No metadata found at %s", path)
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return BackupMetadata.from_dict(payload)
        except (OSError, json.JSONDecodeError, MetadataCorruptError) as exc:
            logger.warning("Metadata at %s is unreadable, treating as absent: %s", path, exc)
            return None

    def save(self, meta_dir: Path, metadata: BackupMetadata) -> None:
        text = json.dumps(metadata.to_dict(), indent=2, ensure_ascii=False)
        atomic_write_text(self.path_for(meta_dir), text)

    def rename_reference(self, meta_dir: Path, old_name: str, new_name: str) -> bool:
        metadata = self.load(meta_dir)
        if metadata is None:
            return False
        changed = False
        if metadata.last_backup_file_name == old_name:
            metadata.last_backup_file_name = new_name
            changed = True
        if metadata.based_on_full_backup == old_name:
            metadata.based_on_full_backup = new_name
            changed = True
        if changed:
            self.save(meta_dir, metadata)
            logger.info("Metadata references renamed from %s to %s", old_name, new_name)
        return changed
