from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .backup_config import ArchiveSettings, FilterSettings
from .blacklist import Blacklist
from .errors import ArchiverNotFoundError

logger = logging.getLogger(__name__)

WINDOWS_EXECUTABLES = ("7z.exe", "7zz.exe", "7za.exe")
POSIX_EXECUTABLES = ("7zz", "7z", "7za")
POSIX_INSTALL_DIRS = ("/usr/local/bin", "/usr/bin", "/opt/homebrew/bin", "/usr/lib/p7zip")


class ArchiverMode(str, Enum):
    ADD = "a"
    UPDATE = "u"
    EXTRACT = "x"


@dataclass(frozen=True)
class ArchiverResult:
    exit_code: int | None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def __bool__(self) -> bool:
        return self.ok


def redact(args: Iterable[str], secret: str) -> list[str]:
    if not secret:
        return list(args)
    return [arg.replace(secret, "***") for arg in args]


class ArchiverLocator:
    def __init__(
        self,
        configured_path: str = "",
        app_root: Path | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        windows: bool | None = None,
    ) -> None:
        self._configured_path = configured_path.strip()
        self._app_root = app_root or Path(__file__).resolve().parent.parent.parent
        self._environ = environ if environ is not None else os.environ
        self._windows = os.name == "nt" if windows is None else windows

    @property
    def executable_names(self) -> tuple[str, ...]:
        return WINDOWS_EXECUTABLES if self._windows else POSIX_EXECUTABLES

    def candidates(self) -> list[Path]:
        found: list[Path] = []

        def add(path: Path) -> None:
            if path not in found:
                found.append(path)

        if self._configured_path:
            configured = Path(self._configured_path).expanduser()
            if configured.is_absolute():
                add(configured)
            else:
                add(self._app_root / configured)
                add(configured.resolve())

        for name in self.executable_names:
            add(self._app_root / name)

        for directory in self._install_dirs():
            for name in self.executable_names:
                add(directory / name)

        for entry in self._environ.get("PATH", "").split(os.pathsep):
            entry = entry.strip()
            if not entry:
                continue
            for name in self.executable_names:
                add(Path(entry) / name)
        return found

    def resolve(self) -> Path:
        for candidate in self.candidates():
            if candidate.is_file():
                return candidate
        raise ArchiverNotFoundError(
            "Cannot find a 7-Zip executable "
            f"({', '.join(self.executable_names)}); set SEVEN_ZIP_PATH in the env file"
        )

    def _install_dirs(self) -> list[Path]:
        if not self._windows:
            return [Path(item) for item in POSIX_INSTALL_DIRS]
        dirs: list[Path] = []
        for variable in ("ProgramFiles", "ProgramFiles(x86)", "ProgramW6432"):
            value = self._environ.get(variable)
            if value:
                dirs.append(Path(value) / "7-Zip")
        return dirs


class ArchiverClient:
    def __init__(self, locator: ArchiverLocator) -> None:
        self._locator = locator
        self._executable: Path | None = None

    @property
    def executable(self) -> Path:
        if self._executable is None:
            self._executable = self._locator.resolve()
        return self._executable

    def build_args(
        self,
        mode: ArchiverMode,
        source_dir: Path,
        archive_path: Path,
        settings: ArchiveSettings,
        *,
        list_file: Path | None = None,
        filters: FilterSettings | None = None,
        exclude_patterns: Sequence[str] = (),
        include_patterns: Sequence[str] = (),
        level: int | None = None,
        solid: bool | None = None,
    ) -> list[str]:
        if mode is ArchiverMode.EXTRACT:
            args = [mode.value, str(archive_path), f"-o{source_dir}", "-y"]
            if settings.password:
                args.append(f"-p{settings.password}")
            return args

        is_7z = settings.format.lower() == "7z"
        args = [mode.value, f"-t{settings.format}", str(archive_path)]
        if list_file is not None:
            args.extend(["-scsUTF-8", f"@{list_file}"])
        elif not include_patterns:
            args.append("*")

        args.append(f"-mx={settings.compression_level if level is None else level}")
        if settings.method:
            args.append(f"-m0={settings.method}")
        if settings.cpu_threads > 0:
            args.append(f"-mmt={settings.cpu_threads}")
        if solid is False and is_7z:
            args.append("-ms=off")
        if settings.password:
            args.append(f"-p{settings.password}")
            if is_7z:
                args.append("-mhe=on")
        if os.name == "nt":
            args.append("-ssw")

        if filters is not None:
            args.extend(Blacklist(source_dir, filters).archiver_switches())
        args.extend(f"-xr!{pattern}" for pattern in exclude_patterns)
        args.extend(f"-ir!{pattern}" for pattern in include_patterns)
        args.append("-y")
        return args

    def run(
        self,
        args: Iterable[str],
        *,
        cwd: Path,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        cmd = [str(self.executable), *args]
        return subprocess.run(
            cmd,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
            errors="replace",
            capture_output=True,
            check=False,
            timeout=timeout,
        )

    def run_archiver(
        self,
        mode: ArchiverMode,
        source_dir: Path,
        archive_path: Path,
        settings: ArchiveSettings,
        *,
        list_file: Path | None = None,
        filters: FilterSettings | None = None,
        exclude_patterns: Sequence[str] = (),
        include_patterns: Sequence[str] = (),
        level: int | None = None,
        solid: bool | None = None,
        timeout: float | None = None,
    ) -> ArchiverResult:
        """Run one archiver pass. For ``EXTRACT`` ``source_dir`` is the output directory."""
        args = self.build_args(
            mode,
            source_dir,
            archive_path,
            settings,
            list_file=list_file,
            filters=filters,
            exclude_patterns=exclude_patterns,
            include_patterns=include_patterns,
            level=level,
            solid=solid,
        )
        cwd = archive_path.parent if mode is ArchiverMode.EXTRACT else source_dir
        shown = " ".join(redact(args, settings.password))
        executable = self.executable
        logger.debug("[CMD] %s %s", executable.name, shown)

        try:
            process = self.run(args, cwd=cwd, timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.error("Archiver timed out after %ss: %s %s", timeout, executable.name, shown)
            return ArchiverResult(exit_code=None)
        except OSError as exc:
            logger.error("Archiver failed to start (%s): %s %s", exc, executable.name, shown)
            return ArchiverResult(exit_code=None)

        self._log_output(process, settings.password)
        if process.returncode != 0:
            logger.error(
                "Archiver exited with code %s: %s %s",
                process.returncode,
                executable.name,
                shown,
            )
        return ArchiverResult(exit_code=process.returncode)

    def _log_output(self, process: subprocess.CompletedProcess[str], secret: str) -> None:
        for line in redact((process.stdout or "").splitlines(), secret):
            if line.strip():
                logger.info("[7z] %s", line)
        for line in redact((process.stderr or "").splitlines(), secret):
            if line.strip():
                logger.error("[7z err] %s", line)
