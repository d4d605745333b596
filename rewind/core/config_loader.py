from __future__ import annotations

import os
from pathlib import Path

from .backup_config import (
    ArchiveSettings,
    BackupConfig,
    BackupMode,
    FileTypeRule,
    FilterSettings,
    FolderDescriptor,
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}
_MODES = {
    "full": BackupMode.FULL,
    "incremental": BackupMode.INCREMENTAL,
    "smart": BackupMode.INCREMENTAL,
    "overwrite": BackupMode.OVERWRITE,
}


class ConfigLoader:
    def __init__(self, project_root: Path) -> None:
        self._project_root = project_root

    @property
    def default_env_file(self) -> Path:
        return self._project_root / "config" / "rewind.env"

    @property
    def example_env_file(self) -> Path:
        return self._project_root / "config" / "rewind.env.example"

    def load(self, env_path: str | None = None) -> BackupConfig:
        env_file = Path(env_path).expanduser() if env_path else self.default_env_file
        if not env_file.is_file():
            raise SystemExit(
                f"Missing env file: {env_file}\n"
                f"Create it from: {self.example_env_file}"
            )

        env_values = self._parse_env_file(env_file)
        self._validate_required(env_values)

        destination = self._resolve_path(env_values["DESTINATION"], env_file)
        report_dir = self._resolve_path(env_values["REPORT_DIR"], env_file)
        report_dir.mkdir(parents=True, exist_ok=True)
        source_include_file = self._resolve_path(env_values["SOURCE_INCLUDE_FILE"], env_file)
        folders = self._read_include_file(source_include_file)

        history_value = env_values.get("HISTORY_FILE")
        history_file = (
            self._resolve_path(history_value, env_file)
            if history_value
            else destination / "_metadata" / "history.json"
        )

        return BackupConfig(
            project_root=self._project_root,
            env_file=env_file,
            destination=destination,
            source_include_file=source_include_file,
            folders=folders,
            report_dir=report_dir,
            history_file=history_file,
            archive=self._archive_settings(env_values),
            filters=FilterSettings(
                blacklist=self._read_optional_list(env_values, "EXCLUDE_FILE", env_file),
                use_regex=self._bool(env_values, "USE_REGEX", False),
                restore_whitelist=self._read_optional_list(
                    env_values, "RESTORE_WHITELIST_FILE", env_file
                ),
            ),
            seven_zip_path=env_values.get("SEVEN_ZIP_PATH", ""),
            merge_timeout=self._float(env_values, "MERGE_TIMEOUT", 3600.0),
        )

    def _archive_settings(self, env_values: dict[str, str]) -> ArchiveSettings:
        mode_value = env_values.get("BACKUP_MODE", "full").strip().lower()
        if mode_value not in _MODES:
            raise SystemExit(
                f"Invalid BACKUP_MODE: {mode_value} (expected full, incremental or overwrite)"
            )
        level = self._int(env_values, "COMPRESSION_LEVEL", 5)
        if not 0 <= level <= 9:
            raise SystemExit(f"COMPRESSION_LEVEL must be between 0 and 9, got {level}")

        return ArchiveSettings(
            format=env_values.get("ARCHIVE_FORMAT", "7z").lstrip(".") or "7z",
            compression_level=level,
            method=env_values.get("COMPRESSION_METHOD", "LZMA2"),
            keep_count=self._int(env_values, "KEEP_COUNT", 0),
            mode=_MODES[mode_value],
            password=env_values.get("ARCHIVE_PASSWORD", ""),
            cpu_threads=self._int(env_values, "CPU_THREADS", 0),
            max_smart_backups_per_full=self._int(env_values, "MAX_SMART_BACKUPS_PER_FULL", 0),
            safe_delete_enabled=self._bool(env_values, "SAFE_DELETE", True),
            skip_if_unchanged=self._bool(env_values, "SKIP_IF_UNCHANGED", True),
            backup_before_restore=self._bool(env_values, "BACKUP_BEFORE_RESTORE", False),
            file_type_rules=self._parse_type_rules(env_values.get("FILE_TYPE_RULES", "")),
        )

    def _parse_env_file(self, env_file: Path) -> dict[str, str]:
        values: dict[str, str] = {}
        for raw_line in env_file.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, value = line.split("=", 1)
            cleaned = value.strip().strip('"').strip("'")
            values[key.strip()] = os.path.expandvars(cleaned)
        return values

    def _validate_required(self, env_values: dict[str, str]) -> None:
        required = ["DESTINATION", "SOURCE_INCLUDE_FILE", "REPORT_DIR"]
        missing = [name for name in required if not env_values.get(name)]
        if missing:
            missing_str = ", ".join(missing)
            raise SystemExit(f"Missing required config values: {missing_str}")

    def _resolve_path(self, value: str, env_file: Path) -> Path:
        resolved = Path(value).expanduser()
        if not resolved.is_absolute():
            resolved = env_file.parent / resolved
        return resolved

    def _int(self, env_values: dict[str, str], key: str, default: int) -> int:
        raw = env_values.get(key, "").strip()
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError:
            raise SystemExit(f"{key} must be an integer, got {raw!r}") from None

    def _float(self, env_values: dict[str, str], key: str, default: float) -> float:
        raw = env_values.get(key, "").strip()
        if not raw:
            return default
        try:
            return float(raw)
        except ValueError:
            raise SystemExit(f"{key} must be a number, got {raw!r}") from None

    def _bool(self, env_values: dict[str, str], key: str, default: bool) -> bool:
        raw = env_values.get(key, "").strip().lower()
        if not raw:
            return default
        if raw in _TRUE:
            return True
        if raw in _FALSE:
            return False
        raise SystemExit(f"{key} must be a boolean (true/false), got {raw!r}")

    def _parse_type_rules(self, raw: str) -> list[FileTypeRule]:
        rules: list[FileTypeRule] = []
        for item in raw.split(","):
            item = item.strip()
            if not item:
                continue
            pattern, sep, level_text = item.rpartition(":")
            if not sep or not pattern.strip():
                raise SystemExit(f"Invalid FILE_TYPE_RULES entry: {item!r} (expected pattern:level)")
            try:
                level = int(level_text)
            except ValueError:
                raise SystemExit(f"Invalid compression level in FILE_TYPE_RULES: {item!r}") from None
            if not 0 <= level <= 9:
                raise SystemExit(f"Invalid compression level in FILE_TYPE_RULES: {item!r}")
            rules.append(FileTypeRule(pattern.strip(), level))
        return rules

    def _read_optional_list(
        self,
        env_values: dict[str, str],
        key: str,
        env_file: Path,
    ) -> list[str]:
        value = env_values.get(key)
        if not value:
            return []
        list_file = self._resolve_path(value, env_file)
        if not list_file.is_file():
            raise SystemExit(f"Missing {key.lower().replace('_', ' ')}: {list_file}")
        lines: list[str] = []
        for raw_line in list_file.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            lines.append(line)
        return lines

    def _read_include_file(self, include_file: Path) -> list[FolderDescriptor]:
        if not include_file.is_file():
            raise SystemExit(f"Missing source include file: {include_file}")

        folders: list[FolderDescriptor] = []
        seen: set[str] = set()
        for raw_line in include_file.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            path_text, _, name = line.partition("|")
            cleaned = os.path.expandvars(path_text.strip().strip('"').strip("'"))
            candidate = Path(cleaned).expanduser()
            if not candidate.is_absolute():
                candidate = include_file.parent / candidate
            display_name = name.strip() or candidate.name
            if display_name in seen:
                raise SystemExit(
                    f"Duplicate folder name {display_name!r} in include file: {include_file}"
                )
            seen.add(display_name)
            folders.append(FolderDescriptor(candidate, display_name))

        if not folders:
            raise SystemExit(
                f"No source folders found in include file: {include_file}")
        return folders
