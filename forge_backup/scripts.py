"""Cron-friendly wrapper scripts for the backup commands."""

from __future__ import annotations

import os
import shlex
from pathlib import Path

WRAPPER_SCRIPTS = {
    "mysql-backup.sh": "dump",
    "restic-backup.sh": "backup",
    "restic-mount.sh": "mount",
}

_TEMPLATE = """#!/bin/bash
# Written by forge_backup setup; rerun setup to regenerate.
exec {command} "$@"
"""


def render_wrapper(python: str, command: str, config_path: Path | None) -> str:
    args = [python, "-m", "forge_backup", command]
    if config_path is not None:
        args.extend(["--config", str(config_path)])
    return _TEMPLATE.format(command=shlex.join(args))


def write_wrapper_scripts(
    script_dir: Path, python: str, config_path: Path | None
) -> list[Path]:
    script_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, command in WRAPPER_SCRIPTS.items():
        path = script_dir / name
        path.write_text(render_wrapper(python, command, config_path))
        os.chmod(path, 0o755)
        written.append(path)
    return written
