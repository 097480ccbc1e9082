"""Dump, backup, mount and reporting workflows."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from forge_backup.conffiles import (
    EXCLUDES_CONF,
    MYSQL_CONF,
    PASSWORD_CONF,
    RESTIC_CONF,
    S3_CONF,
    ConfFileError,
    ConfStore,
)
from forge_backup.config import Config
from forge_backup.dumps import DumpError, DumpManager, DumpResult, mysqldump_args
from forge_backup.lock import LockError, RunLock, read_holder
from forge_backup.metrics import calculate_dump_metrics, format_size
from forge_backup.mysql import MySQLClient, MySQLError
from forge_backup.restic import ResticError, ResticRepository, RetentionPolicy
from forge_backup.runner import CommandError, CommandRunner, format_command
from forge_backup.state import RunState, load_state, save_state

OPERATION_ERRORS = (
    ConfFileError,
    CommandError,
    DumpError,
    MySQLError,
    ResticError,
)


@dataclass(frozen=True)
class BackupRequest:
    skip_dump: bool = False
    skip_check: bool = False
    dry_run: bool = False


class BackupOrchestrator:
    def __init__(
        self,
        config: Config,
        runner: CommandRunner | None = None,
        logger: logging.Logger | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.runner = runner or CommandRunner(self.logger)
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.store = ConfStore(config.global_cfg.conf_dir)

    def run_dump(self) -> int:
        return self._locked("dump", self._dump_and_record)

    def run_backup(self, request: BackupRequest) -> int:
        if request.dry_run:
            return self._plan_backup(request)
        return self._locked("backup", lambda: self._backup(request))

    def run_mount(self) -> int:
        mount_point = self.config.paths.mount_point
        try:
            repository = self._make_repository()
            mount_point.mkdir(parents=True, exist_ok=True)
            print("----------------------------------------")
            print(f"Mounting backup at {mount_point}...")
            print("----------------------------------------")
            repository.mount(mount_point)
        except KeyboardInterrupt:
            self.logger.info("event=mount_stopped path=%s", mount_point)
        except (*OPERATION_ERRORS, OSError) as exc:
            self.logger.error("event=mount_failed error=%s", exc)
            return 1
        print(f"Unmount with 'umount {mount_point}' when you're done!")
        return 0

    def run_snapshots(self) -> int:
        try:
            snapshots = self._make_repository().snapshots()
        except OPERATION_ERRORS as exc:
            self.logger.error("event=snapshots_failed error=%s", exc)
            return 1
        if not snapshots:
            print("no snapshots")
            return 0
        for snapshot in snapshots:
            print(
                f"{snapshot.short_id}  "
                f"{snapshot.time.strftime('%Y-%m-%d %H:%M:%S')}  "
                f"{snapshot.hostname}  {', '.join(snapshot.paths)}"
            )
        return 0

    def run_status(self) -> int:
        print(f"conf dir: {self.store.conf_dir}")
        for name in (RESTIC_CONF, MYSQL_CONF, S3_CONF, EXCLUDES_CONF, PASSWORD_CONF):
            mark = "✓" if self.store.exists(name) else "✗"
            print(f"  {mark} {name}")
        holder = read_holder(self.config.global_cfg.lock_path)
        if holder is None:
            print("lock: free")
        elif holder.alive:
            print(f"lock: held by {holder.describe()}")
        else:
            print(f"lock: stale, left by {holder.describe()}")
        try:
            state = load_state(self.config.global_cfg.state_path)
        except (OSError, ValueError) as exc:
            print(f"state: unreadable ({exc})")
            return 0
        print(f"last dump:   {state.last_dump_at or 'never'}")
        print(f"last backup: {state.last_backup_at or 'never'}")
        print(f"last check:  {state.last_check_at or 'never'}")
        if state.last_error:
            print(f"last error:  {state.last_error} ({state.last_error_at})")
        return 0

    def _locked(self, name: str, action: Callable[[], None]) -> int:
        lock = RunLock(self.config.global_cfg.lock_path, command=name)
        try:
            lock.acquire()
        except (LockError, OSError) as exc:
            self.logger.error("event=%s_lock_failed error=%s", name, exc)
            return 1
        try:
            action()
        except (*OPERATION_ERRORS, OSError) as exc:
            self.logger.error("event=%s_failed error=%s", name, exc)
            self._record(lambda state: state.with_error(str(exc), self._timestamp()))
            return 1
        finally:
            lock.release()
        self.logger.info("event=%s_complete status=ok", name)
        return 0

    def _dump_and_record(self) -> None:
        results = self._dump()
        stamp = self._timestamp()
        self._record(
            lambda state: replace(
                state, last_dump_at=stamp, last_dump_count=len(results)
            )
        )

    def _dump(self) -> list[DumpResult]:
        paths = self.store.load_restic_paths()
        manager = self._make_dump_manager(Path(paths.db_backup_dir))
        start_time = time.monotonic()
        results = manager.dump_all()
        metrics = calculate_dump_metrics(
            [result.size for result in results], time.monotonic() - start_time
        )
        self.logger.info(
            "event=dump_metrics files=%d total=%s elapsed_seconds=%.3f rate=%s/s",
            metrics.file_count,
            format_size(metrics.total_bytes),
            metrics.elapsed_seconds,
            format_size(metrics.throughput_bytes_per_sec),
        )
        deleted = manager.prune(self.config.dumps.retention_days)
        self.logger.info(
            "event=dump_prune_complete deleted=%d retention_days=%d",
            len(deleted),
            self.config.dumps.retention_days,
        )
        return results

    def _backup(self, request: BackupRequest) -> None:
        results: list[DumpResult] = []
        if not request.skip_dump:
            results = self._dump()
        paths = self.store.load_restic_paths()
        repository = self._make_repository()
        start_time = time.monotonic()
        repository.backup(
            Path(paths.backup_target), self.store.path(EXCLUDES_CONF)
        )
        self.logger.info(
            "event=restic_backup_complete target=%s elapsed_seconds=%.3f",
            paths.backup_target,
            time.monotonic() - start_time,
        )
        repository.forget(self._retention_policy())
        repository.prune()
        self.logger.info("event=restic_prune_complete")
        checked = not request.skip_check
        if checked:
            repository.check()
            self.logger.info("event=restic_check_complete status=ok")

        stamp = self._timestamp()

        def update(state: RunState) -> RunState:
            state = replace(state, last_backup_at=stamp, last_error=None, last_error_at=None)
            if not request.skip_dump:
                state = replace(state, last_dump_at=stamp, last_dump_count=len(results))
            if checked:
                state = replace(state, last_check_at=stamp)
            return state

        self._record(update)

    def _plan_backup(self, request: BackupRequest) -> int:
        try:
            paths = self.store.load_restic_paths()
            repository = self._make_repository()
            credentials = None if request.skip_dump else self.store.load_mysql()
        except ConfFileError as exc:
            self.logger.error("event=backup_plan_failed error=%s", exc)
            return 1
        base = repository.base_args()
        planned: list[list[str]] = []
        if credentials is not None:
            planned.append(
                mysqldump_args(credentials.mysqldump, credentials.user, "<schema>")
            )
        planned.append(
            base
            + [
                "backup",
                paths.backup_target,
                f"--exclude-file={self.store.path(EXCLUDES_CONF)}",
            ]
        )
        planned.append(base + ["forget"] + self._retention_policy().to_args())
        planned.append(base + ["prune"])
        if not request.skip_check:
            planned.append(base + ["check"])
        for args in planned:
            print(format_command(args))
        self.logger.info("event=backup_dry_run status=skipped steps=%d", len(planned))
        return 0

    def _make_dump_manager(self, backup_dir: Path) -> DumpManager:
        credentials = self.store.load_mysql()
        client = MySQLClient(
            credentials.mysql,
            self.runner,
            host=self.config.mysql.host,
            excluded_schemas=self.config.mysql.excluded_schemas,
        )
        return DumpManager(
            backup_dir,
            client,
            credentials,
            owner=self.config.paths.owner,
            logger=self.logger,
        )

    def _make_repository(self) -> ResticRepository:
        credentials = self.store.load_s3()
        self.store.load_password()
        return ResticRepository(
            self.config.restic.restic_bin,
            credentials,
            self.store.path(PASSWORD_CONF),
            self.runner,
            endpoint=self.config.restic.s3_endpoint,
        )

    def _retention_policy(self) -> RetentionPolicy:
        retention = self.config.retention
        return RetentionPolicy(
            keep_daily=retention.keep_daily,
            keep_weekly=retention.keep_weekly,
            keep_monthly=retention.keep_monthly,
            keep_yearly=retention.keep_yearly,
        )

    def _record(self, update: Callable[[RunState], RunState]) -> None:
        path = self.config.global_cfg.state_path
        try:
            save_state(path, update(load_state(path)))
        except (OSError, ValueError) as exc:
            self.logger.warning("event=state_write_failed path=%s error=%s", path, exc)

    def _timestamp(self) -> str:
        return self.now().astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
