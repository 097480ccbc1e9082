"""CLI parsing tests."""

from __future__ import annotations

import io
import logging
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

from forge_backup import cli
from forge_backup.orchestrator import BackupRequest
from forge_backup.runner import CommandError


def _write_config(temp_dir: str) -> Path:
    root = Path(temp_dir)
    path = root / "config.toml"
    path.write_text(
        "\n".join(
            [
                "[global]",
                f'conf_dir = "{root / "conf"}"',
                f'script_dir = "{root}"',
                f'state_path = "{root / "state.json"}"',
                f'lock_path = "{root / "lock"}"',
                "",
                "[paths]",
                f'backup_target = "{root / "home"}"',
                f'mount_point = "{root / "mnt"}"',
                'owner = ""',
                "",
            ]
        )
    )
    return path


class ParseArgsTests(unittest.TestCase):
    def test_setup_flags(self) -> None:
        args = cli.parse_args(["setup", "--skip-install", "--init", "--create-bucket"])
        self.assertEqual(args.command, "setup")
        self.assertTrue(args.skip_install)
        self.assertTrue(args.init_repo)
        self.assertTrue(args.create_bucket)

    def test_setup_init_defaults_to_prompt(self) -> None:
        self.assertIsNone(cli.parse_args(["setup"]).init_repo)
        self.assertFalse(cli.parse_args(["setup", "--no-init"]).init_repo)

    def test_backup_flags(self) -> None:
        args = cli.parse_args(
            ["backup", "--skip-dump", "--dry-run", "--log-level", "debug"]
        )
        self.assertTrue(args.skip_dump)
        self.assertFalse(args.skip_check)
        self.assertTrue(args.dry_run)
        self.assertEqual(args.log_level, "debug")

    def test_no_args_prints_help(self) -> None:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            self.assertEqual(cli.main([]), 0)
        self.assertIn("usage:", buffer.getvalue())

    def test_unknown_command_is_usage_error(self) -> None:
        with redirect_stderr(io.StringIO()):
            self.assertEqual(cli.main(["restore"]), 2)


class MainTests(unittest.TestCase):
    def setUp(self) -> None:
        self._handlers = list(logging.getLogger().handlers)

    def tearDown(self) -> None:
        root = logging.getLogger()
        for handler in list(root.handlers):
            if handler not in self._handlers:
                root.removeHandler(handler)

    def test_missing_config_returns_2(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            stderr = io.StringIO()
            with redirect_stderr(stderr):
                result = cli.main(
                    ["status", "--config", str(Path(temp_dir) / "missing.toml")]
                )
        self.assertEqual(result, 2)
        self.assertIn("config error", stderr.getvalue())

    def test_invalid_log_level_returns_2(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = _write_config(temp_dir)
            with redirect_stderr(io.StringIO()):
                result = cli.main(
                    ["status", "--config", str(config_path), "--log-level", "loud"]
                )
        self.assertEqual(result, 2)

    def test_status_with_config(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = _write_config(temp_dir)
            buffer = io.StringIO()
            with redirect_stdout(buffer), redirect_stderr(io.StringIO()):
                result = cli.main(["status", "--config", str(config_path)])
        self.assertEqual(result, 0)
        self.assertIn(f"conf dir: {Path(temp_dir) / 'conf'}", buffer.getvalue())
        self.assertIn("✗ restic.conf", buffer.getvalue())

    def test_backup_dispatches_request(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = _write_config(temp_dir)
            with mock.patch("forge_backup.cli.BackupOrchestrator") as orchestrator_cls:
                orchestrator_cls.return_value.run_backup.return_value = 0
                with redirect_stderr(io.StringIO()):
                    result = cli.main(
                        ["backup", "--config", str(config_path), "--skip-check"]
                    )
        self.assertEqual(result, 0)
        orchestrator_cls.return_value.run_backup.assert_called_once_with(
            BackupRequest(skip_dump=False, skip_check=True, dry_run=False)
        )

    def test_dump_failure_exit_code(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = _write_config(temp_dir)
            with mock.patch("forge_backup.cli.BackupOrchestrator") as orchestrator_cls:
                orchestrator_cls.return_value.run_dump.return_value = 1
                with redirect_stderr(io.StringIO()):
                    result = cli.main(["dump", "--config", str(config_path)])
        self.assertEqual(result, 1)


class RunSetupTests(unittest.TestCase):
    def test_command_failure_returns_1(self) -> None:
        args = cli.parse_args(["setup", "--no-init"])
        config = mock.Mock()
        with mock.patch("forge_backup.cli.Bootstrap") as bootstrap_cls:
            bootstrap_cls.return_value.run.side_effect = CommandError(
                ["/usr/bin/mysql"], 1, "access denied"
            )
            self.assertEqual(cli.run_setup(args, config), 1)

    def test_interrupt_returns_1(self) -> None:
        args = cli.parse_args(["setup"])
        with mock.patch("forge_backup.cli.Bootstrap") as bootstrap_cls:
            bootstrap_cls.return_value.run.side_effect = KeyboardInterrupt
            with redirect_stderr(io.StringIO()):
                self.assertEqual(cli.run_setup(args, mock.Mock()), 1)

    def test_options_passed_through(self) -> None:
        args = cli.parse_args(
            ["setup", "--skip-install", "--init", "--config", "/etc/forge_backup.toml"]
        )
        with mock.patch("forge_backup.cli.Bootstrap") as bootstrap_cls:
            self.assertEqual(cli.run_setup(args, mock.Mock()), 0)
        options = bootstrap_cls.return_value.run.call_args.args[0]
        self.assertTrue(options.skip_install)
        self.assertTrue(options.init_repo)
        self.assertFalse(options.create_bucket)
        self.assertEqual(options.config_path, Path("/etc/forge_backup.toml"))


if __name__ == "__main__":
    unittest.main()
