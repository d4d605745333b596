#!/usr/bin/env python3

from __future__ import annotations

import argparse
from pathlib import Path

from .commands.factory import CommandFactory
from .core.backup_config import RestoreMode
from .core.log_setup import configure_console


class CliApplication:
    def __init__(self, project_root: Path, factory: CommandFactory | None = None) -> None:
        self._factory = factory or CommandFactory(project_root)

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="rewind",
            description="Folder backup with full, incremental and overwrite archives",
        )
        parser.add_argument(
            "--env-file",
            default=None,
            help="Path to env file (default: config/rewind.env)",
        )
        parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
        subparsers = parser.add_subparsers(dest="action", required=True)

        backup_parser = subparsers.add_parser("backup", help="Back up configured folders.")
        backup_parser.add_argument("--folder", default=None, help="Only back up this folder.")
        backup_parser.add_argument("--comment", default="", help="Comment added to the archive name.")

        restore_parser = subparsers.add_parser("restore", help="Restore a folder from an archive.")
        restore_parser.add_argument("folder", help="Configured folder name.")
        restore_parser.add_argument("archive", help="Archive file name to restore up to.")
        restore_parser.add_argument(
            "--mode",
            choices=("clean", "overwrite"),
            default="clean",
            help="clean wipes the folder first (whitelist excepted); overwrite keeps extra files.",
        )

        prune_parser = subparsers.add_parser("prune", help="Apply the keep-count policy.")
        prune_parser.add_argument("--folder", default=None, help="Only prune this folder.")

        subparsers.add_parser("report", help="Write a per-folder archive report.")
        return parser

    def run(self, argv: list[str] | None = None) -> int:
        args = self.build_parser().parse_args(argv)
        configure_console(args.verbose)
        options = {
            key: value
            for key, value in vars(args).items()
            if key not in ("action", "env_file", "verbose")
        }
        if args.action == "restore":
            options["mode"] = RestoreMode.CLEAN if args.mode == "clean" else RestoreMode.OVERWRITE
        command = self._factory.create(args.action, args.env_file, **options)
        return command.run()


def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    app = CliApplication(project_root)
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
