"""restic repository operations backed by S3."""

from __future__ import annotations

import json
import re
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from forge_backup.conffiles import S3Credentials
from forge_backup.runner import CommandError, CommandRunner

MOUNT_GRACE_SECONDS = 10.0

_FRACTION_RE = re.compile(r"\.(\d{1,9})")


class ResticError(RuntimeError):
    """Raised when a restic operation fails."""


@dataclass(frozen=True)
class RetentionPolicy:
    keep_daily: int = 7
    keep_weekly: int = 4
    keep_monthly: int = 12
    keep_yearly: int = 2

    def to_args(self) -> list[str]:
        args: list[str] = []
        for flag, value in (
            ("--keep-daily", self.keep_daily),
            ("--keep-weekly", self.keep_weekly),
            ("--keep-monthly", self.keep_monthly),
            ("--keep-yearly", self.keep_yearly),
        ):
            if value > 0:
                args.extend([flag, str(value)])
        return args


@dataclass(frozen=True)
class Snapshot:
    id: str
    short_id: str
    time: datetime
    hostname: str
    paths: tuple[str, ...]
    tags: tuple[str, ...] = ()

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Snapshot":
        snapshot_id = data.get("id")
        if not isinstance(snapshot_id, str) or not snapshot_id:
            raise ResticError("snapshot missing id")
        raw_time = data.get("time")
        if not isinstance(raw_time, str):
            raise ResticError(f"snapshot {snapshot_id} missing time")
        return Snapshot(
            id=snapshot_id,
            short_id=str(data.get("short_id") or snapshot_id[:8]),
            time=parse_restic_time(raw_time),
            hostname=str(data.get("hostname", "")),
            paths=tuple(str(path) for path in data.get("paths") or ()),
            tags=tuple(str(tag) for tag in data.get("tags") or ()),
        )


class ResticRepository:
    def __init__(
        self,
        restic_bin: str,
        credentials: S3Credentials,
        password_file: Path,
        runner: CommandRunner,
        endpoint: str = "s3.amazonaws.com",
    ) -> None:
        self.restic_bin = restic_bin
        self.credentials = credentials
        self.password_file = password_file
        self.runner = runner
        self.endpoint = endpoint

    @property
    def url(self) -> str:
        return f"s3:{self.endpoint}/{self.credentials.bucket}"

    def base_args(self) -> list[str]:
        return [
            self.restic_bin,
            "-r",
            self.url,
            "-o",
            f"s3.region={self.credentials.region}",
            f"--password-file={self.password_file}",
        ]

    def env(self) -> dict[str, str]:
        return {
            "AWS_ACCESS_KEY_ID": self.credentials.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.credentials.secret_access_key,
        }

    def init(self) -> None:
        self._run("init", [])

    def backup(self, target: Path, exclude_file: Path) -> str:
        return self._run(
            "backup", [str(target), f"--exclude-file={exclude_file}"]
        )

    def forget(self, policy: RetentionPolicy) -> str:
        flags = policy.to_args()
        if not flags:
            raise ResticError("retention policy keeps nothing")
        return self._run("forget", flags)

    def prune(self) -> str:
        return self._run("prune", [])

    def check(self) -> str:
        return self._run("check", [])

    def mount(
        self, mount_point: Path, grace_seconds: float = MOUNT_GRACE_SECONDS
    ) -> None:
        """Mount read-only in the foreground until interrupted.

        Ctrl-C reaches restic through the shared process group; it is given
        ``grace_seconds`` to unmount before being terminated. The
        ``KeyboardInterrupt`` is re-raised once restic has exited.
        """
        args = self.base_args() + ["mount", str(mount_point)]
        try:
            process = self.runner.spawn(args, env=self.env())
        except CommandError as exc:
            raise ResticError(f"restic mount failed: {exc}") from exc
        try:
            returncode = process.wait()
        except KeyboardInterrupt:
            _stop(process, grace_seconds)
            raise
        if returncode != 0:
            raise ResticError(
                f"restic mount failed: {CommandError(args, returncode)}"
            )

    def snapshots(self) -> list[Snapshot]:
        output = self._run("snapshots", ["--json"])
        try:
            data = json.loads(output or "[]")
        except json.JSONDecodeError as exc:
            raise ResticError(f"invalid snapshots output: {exc}") from exc
        if not isinstance(data, list):
            raise ResticError("snapshots output must be a list")
        snapshots = [Snapshot.from_dict(item) for item in data]
        snapshots.sort(key=lambda snap: snap.time)
        return snapshots

    def _run(self, command: str, args: list[str]) -> str:
        try:
            result = self.runner.run(
                self.base_args() + [command] + args, env=self.env()
            )
        except CommandError as exc:
            raise ResticError(f"restic {command} failed: {exc}") from exc
        return result.stdout or ""


def parse_restic_time(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    normalized = _FRACTION_RE.sub(
        lambda match: "." + match.group(1)[:6].ljust(6, "0"), normalized, count=1
    )
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ResticError(f"invalid snapshot time: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _stop(process: subprocess.Popen[bytes], grace_seconds: float) -> None:
    try:
        process.wait(timeout=grace_seconds)
        return
    except subprocess.TimeoutExpired:
        process.terminate()
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()
