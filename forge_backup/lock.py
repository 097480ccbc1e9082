"""Single-run lock shared by the dump and backup jobs.

The lock file holds ``<pid> <command>`` so a refused run, and ``status``,
can say which job is in progress.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


class LockError(RuntimeError):
    """Raised when another dump or backup holds the lock."""


@dataclass(frozen=True)
class LockHolder:
    pid: int
    command: str

    @property
    def alive(self) -> bool:
        if self.pid <= 0:
            return False
        try:
            os.kill(self.pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # exists, owned by another user
            return True
        return True

    def describe(self) -> str:
        return f"{self.command} (pid {self.pid})"


def read_holder(path: Path) -> LockHolder | None:
    """Return the recorded holder, or None when the file is absent or garbled."""
    try:
        fields = path.read_text(encoding="utf-8").split()
    except OSError:
        return None
    if not fields:
        return None
    try:
        pid = int(fields[0])
    except ValueError:
        return None
    command = fields[1] if len(fields) > 1 else "unknown"
    return LockHolder(pid=pid, command=command)


class RunLock:
    def __init__(self, path: Path, command: str = "backup") -> None:
        self.path = path
        self.command = command
        self.held = False

    def acquire(self) -> "RunLock":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        reclaimed = False
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                break
            except FileExistsError:
                holder = read_holder(self.path)
                if holder is not None and holder.alive:
                    raise LockError(
                        f"{self.command} refused: {holder.describe()} already running"
                    ) from None
                if reclaimed:
                    raise LockError(f"lost the race for {self.path}") from None
                self.path.unlink(missing_ok=True)
                reclaimed = True
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(f"{os.getpid()} {self.command}\n")
        self.held = True
        return self

    def release(self) -> None:
        if not self.held:
            return
        self.held = False
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> "RunLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
