"""External command execution."""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from typing import Mapping, Sequence

_SECRET_ARG_RE = re.compile(r"^(--password=)(.+)$")


class CommandError(RuntimeError):
    """Raised when an external command fails."""

    def __init__(
        self, args: Sequence[str], returncode: int | None, stderr: str = ""
    ) -> None:
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        if returncode is None:
            message = f"command not found: {args[0] if args else '?'}"
        else:
            message = f"{format_command(args)} exited with {returncode}"
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(message)


class CommandRunner:
    """Run external binaries with checked exit codes."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def run(
        self,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        self.logger.debug("event=command_run command=%s", format_command(args))
        try:
            result = subprocess.run(
                list(args),
                check=False,
                text=True,
                capture_output=True,
                env=build_env(env),
            )
        except FileNotFoundError:
            raise CommandError(args, None) from None
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise CommandError(args, result.returncode, stderr)
        return result

    def spawn(
        self, args: Sequence[str], env: Mapping[str, str] | None = None
    ) -> subprocess.Popen[bytes]:
        """Start a foreground process sharing the terminal; the caller waits."""
        self.logger.debug("event=command_spawn command=%s", format_command(args))
        try:
            return subprocess.Popen(list(args), env=build_env(env))
        except FileNotFoundError:
            raise CommandError(args, None) from None


def build_env(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    env = os.environ.copy()
    if extra:
        env.update(extra)
    env["PATH"] = ensure_sbin_on_path(env.get("PATH", ""))
    return env


def ensure_sbin_on_path(path: str) -> str:
    parts = [entry for entry in path.split(os.pathsep) if entry]
    for entry in ("/usr/sbin", "/sbin"):
        if entry not in parts:
            parts.append(entry)
    return os.pathsep.join(parts)


def format_command(args: Sequence[str]) -> str:
    return shlex.join(_redact(arg) for arg in args)


def _redact(arg: str) -> str:
    match = _SECRET_ARG_RE.match(arg)
    if not match:
        return arg
    return f"{match.group(1)}***"
