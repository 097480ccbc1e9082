"""restic repository tests."""

from __future__ import annotations

import json
import subprocess
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

from forge_backup.conffiles import S3Credentials
from forge_backup.restic import (
    ResticError,
    ResticRepository,
    RetentionPolicy,
    parse_restic_time,
)
from forge_backup.runner import CommandError

CREDENTIALS = S3Credentials(
    access_key_id="AKIA",
    secret_access_key="secret",
    bucket="forge-backups",
    region="eu-west-1",
)

BASE = [
    "/usr/bin/restic",
    "-r",
    "s3:s3.amazonaws.com/forge-backups",
    "-o",
    "s3.region=eu-west-1",
    "--password-file=/root/restic/conf/password.conf",
]


class RecordingRunner:
    def __init__(self, stdout: str = "", fail: bool = False) -> None:
        self.stdout = stdout
        self.fail = fail
        self.calls: list[list[str]] = []
        self.kwargs: list[dict[str, object]] = []
        self.process = mock.Mock()
        self.process.wait.return_value = 0

    def run(self, args, env=None):
        self.calls.append(list(args))
        self.kwargs.append({"env": env})
        if self.fail:
            raise CommandError(args, 1, "Fatal: unable to open config file")
        return subprocess.CompletedProcess(args, 0, stdout=self.stdout, stderr="")

    def spawn(self, args, env=None):
        self.calls.append(list(args))
        self.kwargs.append({"env": env})
        return self.process


def _repository(runner: RecordingRunner) -> ResticRepository:
    return ResticRepository(
        "/usr/bin/restic",
        CREDENTIALS,
        Path("/root/restic/conf/password.conf"),
        runner,
    )


class RetentionPolicyTests(unittest.TestCase):
    def test_default_policy_flags(self) -> None:
        self.assertEqual(
            RetentionPolicy().to_args(),
            [
                "--keep-daily",
                "7",
                "--keep-weekly",
                "4",
                "--keep-monthly",
                "12",
                "--keep-yearly",
                "2",
            ],
        )

    def test_zero_counts_are_omitted(self) -> None:
        policy = RetentionPolicy(keep_daily=3, keep_weekly=0, keep_monthly=0, keep_yearly=1)
        self.assertEqual(policy.to_args(), ["--keep-daily", "3", "--keep-yearly", "1"])


class ResticRepositoryTests(unittest.TestCase):
    def test_init_uses_repository_options_and_credentials(self) -> None:
        runner = RecordingRunner()
        repository = _repository(runner)
        repository.init()
        self.assertEqual(runner.calls, [BASE + ["init"]])
        self.assertEqual(
            runner.kwargs[0]["env"],
            {"AWS_ACCESS_KEY_ID": "AKIA", "AWS_SECRET_ACCESS_KEY": "secret"},
        )

    def test_backup_forget_prune_check_commands(self) -> None:
        runner = RecordingRunner()
        repository = _repository(runner)
        repository.backup(Path("/home/forge"), Path("/root/restic/conf/excludes.conf"))
        repository.forget(RetentionPolicy())
        repository.prune()
        repository.check()
        self.assertEqual(
            runner.calls,
            [
                BASE
                + [
                    "backup",
                    "/home/forge",
                    "--exclude-file=/root/restic/conf/excludes.conf",
                ],
                BASE + ["forget"] + RetentionPolicy().to_args(),
                BASE + ["prune"],
                BASE + ["check"],
            ],
        )

    def test_forget_rejects_empty_policy(self) -> None:
        runner = RecordingRunner()
        with self.assertRaises(ResticError):
            _repository(runner).forget(RetentionPolicy(0, 0, 0, 0))
        self.assertEqual(runner.calls, [])

    def test_mount_runs_in_foreground(self) -> None:
        runner = RecordingRunner()
        _repository(runner).mount(Path("/mnt/restic"))
        self.assertEqual(runner.calls, [BASE + ["mount", "/mnt/restic"]])
        self.assertEqual(runner.kwargs[0]["env"]["AWS_ACCESS_KEY_ID"], "AKIA")
        runner.process.wait.assert_called_once_with()

    def test_mount_nonzero_exit_raises(self) -> None:
        runner = RecordingRunner()
        runner.process.wait.return_value = 11
        with self.assertRaises(ResticError) as context:
            _repository(runner).mount(Path("/mnt/restic"))
        self.assertIn("exited with 11", str(context.exception))

    def test_mount_interrupt_waits_for_unmount(self) -> None:
        runner = RecordingRunner()
        runner.process.wait.side_effect = [KeyboardInterrupt, 0]
        with self.assertRaises(KeyboardInterrupt):
            _repository(runner).mount(Path("/mnt/restic"), grace_seconds=3)
        self.assertEqual(
            runner.process.wait.call_args_list, [mock.call(), mock.call(timeout=3)]
        )
        runner.process.terminate.assert_not_called()
        runner.process.kill.assert_not_called()

    def test_mount_interrupt_terminates_stuck_restic(self) -> None:
        runner = RecordingRunner()
        runner.process.wait.side_effect = [
            KeyboardInterrupt,
            subprocess.TimeoutExpired("restic", 3),
            0,
        ]
        with self.assertRaises(KeyboardInterrupt):
            _repository(runner).mount(Path("/mnt/restic"), grace_seconds=3)
        runner.process.terminate.assert_called_once_with()
        runner.process.kill.assert_not_called()

    def test_custom_endpoint(self) -> None:
        repository = ResticRepository(
            "restic",
            CREDENTIALS,
            Path("/p"),
            RecordingRunner(),
            endpoint="s3.eu-west-1.wasabisys.com",
        )
        self.assertEqual(repository.url, "s3:s3.eu-west-1.wasabisys.com/forge-backups")

    def test_command_failure_raises_restic_error(self) -> None:
        runner = RecordingRunner(fail=True)
        with self.assertRaises(ResticError) as context:
            _repository(runner).check()
        self.assertIn("restic check failed", str(context.exception))
        self.assertIsInstance(context.exception.__cause__, CommandError)

    def test_snapshots_parses_json_sorted_by_time(self) -> None:
        payload = [
            {
                "id": "b" * 64,
                "short_id": "bbbbbbbb",
                "time": "2026-01-03T02:00:00.123456789+01:00",
                "hostname": "forge",
                "paths": ["/home/forge"],
            },
            {
                "id": "a" * 64,
                "time": "2026-01-02T02:00:00Z",
                "hostname": "forge",
                "paths": ["/home/forge"],
                "tags": ["nightly"],
            },
        ]
        runner = RecordingRunner(stdout=json.dumps(payload))
        snapshots = _repository(runner).snapshots()
        self.assertEqual(runner.calls, [BASE + ["snapshots", "--json"]])
        self.assertEqual([snap.short_id for snap in snapshots], ["aaaaaaaa", "bbbbbbbb"])
        self.assertEqual(snapshots[0].tags, ("nightly",))
        self.assertEqual(snapshots[1].time.microsecond, 123456)

    def test_snapshots_rejects_bad_output(self) -> None:
        with self.assertRaises(ResticError):
            _repository(RecordingRunner(stdout="not json")).snapshots()
        with self.assertRaises(ResticError):
            _repository(RecordingRunner(stdout='{"id": "x"}')).snapshots()
        with self.assertRaises(ResticError):
            _repository(RecordingRunner(stdout='[{"time": "2026-01-01T00:00:00Z"}]')).snapshots()


class ParseTimeTests(unittest.TestCase):
    def test_parse_nanosecond_precision(self) -> None:
        parsed = parse_restic_time("2026-01-02T03:04:05.987654321Z")
        self.assertEqual(
            parsed, datetime(2026, 1, 2, 3, 4, 5, 987654, tzinfo=timezone.utc)
        )

    def test_parse_short_fraction_and_naive(self) -> None:
        parsed = parse_restic_time("2026-01-02T03:04:05.5")
        self.assertEqual(parsed.microsecond, 500000)
        self.assertEqual(parsed.tzinfo, timezone.utc)

    def test_parse_invalid(self) -> None:
        with self.assertRaises(ResticError):
            parse_restic_time("yesterday")


if __name__ == "__main__":
    unittest.main()
