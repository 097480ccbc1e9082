"""Per-schema mysqldump archives and the local retention sweep."""

from __future__ import annotations

import gzip
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable

from forge_backup.conffiles import MySQLCredentials
from forge_backup.mysql import MySQLClient
from forge_backup.runner import build_env

SECONDS_PER_DAY = 24 * 60 * 60
COPY_CHUNK_SIZE = 1024 * 1024


class DumpError(RuntimeError):
    """Raised when a schema dump fails."""


@dataclass(frozen=True)
class DumpResult:
    schema: str
    path: Path
    size: int


def dump_dirname(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def dump_filename(schema: str, now: datetime) -> str:
    return f"{schema}-{now.strftime('%H%M%S')}.gz"


def mysqldump_args(mysqldump_bin: str, user: str, schema: str) -> list[str]:
    return [
        mysqldump_bin,
        "--silent",
        "--force",
        "--opt",
        f"--user={user}",
        "--databases",
        schema,
    ]


class DumpManager:
    def __init__(
        self,
        backup_dir: Path,
        client: MySQLClient,
        credentials: MySQLCredentials,
        owner: str | None = None,
        now: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.backup_dir = backup_dir
        self.client = client
        self.credentials = credentials
        self.owner = owner
        self.now = now or (lambda: datetime.now().astimezone())
        self.logger = logger or logging.getLogger(__name__)

    def dump_all(self) -> list[DumpResult]:
        now = self.now()
        schemas = self.client.list_databases(
            self.credentials.user, self.credentials.password
        )
        target_dir = self.backup_dir / dump_dirname(now)
        target_dir.mkdir(parents=True, exist_ok=True)
        results = []
        for schema in schemas:
            path = target_dir / dump_filename(schema, now)
            self.logger.info("event=dump_start schema=%s path=%s", schema, path)
            size = self.dump_schema(schema, path)
            self._chown(path)
            self.logger.info(
                "event=dump_written schema=%s path=%s bytes=%d",
                schema,
                path,
                size,
            )
            results.append(DumpResult(schema=schema, path=path, size=size))
        return results

    def dump_schema(self, schema: str, path: Path) -> int:
        partial = path.with_name(f"{path.name}.part")
        args = mysqldump_args(
            self.credentials.mysqldump, self.credentials.user, schema
        )
        with tempfile.TemporaryFile() as stderr_file:
            try:
                process = subprocess.Popen(
                    args,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    env=build_env({"MYSQL_PWD": self.credentials.password}),
                )
            except FileNotFoundError:
                raise DumpError(
                    f"mysqldump not found: {self.credentials.mysqldump}"
                ) from None
            if process.stdout is None:
                process.kill()
                raise DumpError("failed to capture mysqldump output")
            try:
                _compress(process.stdout, partial)
            except OSError as exc:
                _terminate(process)
                partial.unlink(missing_ok=True)
                raise DumpError(f"failed to write {partial}: {exc}") from exc
            process.stdout.close()
            returncode = process.wait()
            if returncode != 0:
                partial.unlink(missing_ok=True)
                stderr_file.seek(0)
                error = stderr_file.read().decode("utf-8", errors="replace")
                raise DumpError(
                    f"mysqldump {schema} exited with {returncode}: {error.strip()}"
                )
        partial.replace(path)
        return path.stat().st_size

    def prune(self, retention_days: int) -> list[Path]:
        """Delete dumps older than ``retention_days`` whole days."""
        if not self.backup_dir.exists():
            return []
        now_ts = self.now().timestamp()
        deleted: list[Path] = []
        for path in sorted(self.backup_dir.rglob("*.gz")):
            if not path.is_file():
                continue
            age_days = int((now_ts - path.stat().st_mtime) // SECONDS_PER_DAY)
            if age_days <= retention_days:
                continue
            path.unlink()
            deleted.append(path)
            self.logger.info(
                "event=dump_pruned path=%s age_days=%d", path, age_days
            )
        for entry in sorted(self.backup_dir.iterdir()):
            if entry.is_dir() and not any(entry.iterdir()):
                entry.rmdir()
        return deleted

    def _chown(self, path: Path) -> None:
        if not self.owner:
            return
        try:
            shutil.chown(path, user=self.owner, group=self.owner)
        except (LookupError, PermissionError) as exc:
            self.logger.warning(
                "event=dump_chown_failed path=%s owner=%s error=%s",
                path,
                self.owner,
                exc,
            )


def _compress(stream: BinaryIO, path: Path) -> None:
    with gzip.open(path, "wb") as handle:
        shutil.copyfileobj(stream, handle, COPY_CHUNK_SIZE)


def _terminate(process: subprocess.Popen[bytes], timeout: float = 5.0) -> None:
    if process.stdout is not None:
        process.stdout.close()
    try:
        if process.poll() is None:
            process.terminate()
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()
