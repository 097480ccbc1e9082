"""CLI entrypoint and logging setup."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable

from botocore.exceptions import BotoCoreError

from forge_backup.bootstrap import Bootstrap, SetupError, SetupOptions
from forge_backup.conffiles import ConfFileError
from forge_backup.config import Config, ConfigError, default_config, load_config
from forge_backup.mysql import MySQLError
from forge_backup.orchestrator import BackupOrchestrator, BackupRequest
from forge_backup.restic import ResticError
from forge_backup.runner import CommandError, CommandRunner
from forge_backup.s3 import S3Error


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="forge_backup",
        description="restic + mysqldump backups to S3",
    )
    subparsers = parser.add_subparsers(dest="command")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="path to config.toml")
    common.add_argument("--log-level", help="override log level")

    setup = subparsers.add_parser(
        "setup", parents=[common], help="configure restic, MySQL and S3"
    )
    setup.add_argument(
        "--skip-install", action="store_true", help="do not apt-get install restic"
    )
    setup.add_argument(
        "--init",
        dest="init_repo",
        action="store_true",
        help="initialize the restic repository without asking",
    )
    setup.add_argument(
        "--no-init",
        dest="init_repo",
        action="store_false",
        help="skip repository initialization without asking",
    )
    setup.add_argument(
        "--create-bucket",
        action="store_true",
        help="create the S3 bucket during init if it does not exist",
    )
    setup.set_defaults(init_repo=None)

    subparsers.add_parser(
        "dump", parents=[common], help="dump MySQL schemas and sweep old dumps"
    )

    backup = subparsers.add_parser(
        "backup", parents=[common], help="dump, back up, forget, prune, check"
    )
    backup.add_argument(
        "--skip-dump", action="store_true", help="do not run the MySQL dump first"
    )
    backup.add_argument(
        "--skip-check", action="store_true", help="do not verify the repository"
    )
    backup.add_argument(
        "--dry-run", action="store_true", help="print the commands only"
    )

    subparsers.add_parser(
        "mount", parents=[common], help="mount the repository read-only"
    )
    subparsers.add_parser(
        "snapshots", parents=[common], help="list repository snapshots"
    )
    subparsers.add_parser(
        "status", parents=[common], help="show configuration and last runs"
    )

    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)
    if not argv:
        parser.print_help()
        raise SystemExit(0)
    args = parser.parse_args(argv)
    if args.command is None:
        parser.error("command required")
    return args


def setup_logging(level: str) -> None:
    numeric = _parse_level(level)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main(argv: Iterable[str] | None = None) -> int:
    try:
        args = parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)

    try:
        config = _load_and_override_config(args)
    except ConfigError as exc:
        print(f"config error: {exc}", file=sys.stderr)
        return 2

    setup_logging(config.global_cfg.log_level)
    logging.getLogger(__name__).info("event=command_start command=%s", args.command)
    if args.command == "setup":
        return run_setup(args, config)

    orchestrator = BackupOrchestrator(config)
    if args.command == "dump":
        return orchestrator.run_dump()
    if args.command == "backup":
        return orchestrator.run_backup(
            BackupRequest(
                skip_dump=args.skip_dump,
                skip_check=args.skip_check,
                dry_run=args.dry_run,
            )
        )
    if args.command == "mount":
        return orchestrator.run_mount()
    if args.command == "snapshots":
        return orchestrator.run_snapshots()
    if args.command == "status":
        return orchestrator.run_status()
    return 2


def run_setup(args: argparse.Namespace, config: Config) -> int:
    logger = logging.getLogger(__name__)
    config_path = Path(args.config).expanduser().resolve() if args.config else None
    bootstrap = Bootstrap(config, CommandRunner(logger))
    options = SetupOptions(
        skip_install=args.skip_install,
        init_repo=args.init_repo,
        create_bucket=args.create_bucket,
        config_path=config_path,
    )
    try:
        bootstrap.run(options)
    except (EOFError, KeyboardInterrupt):
        print("", file=sys.stderr)
        logger.error("event=setup_aborted status=failed")
        return 1
    except (
        BotoCoreError,
        CommandError,
        ConfFileError,
        MySQLError,
        OSError,
        ResticError,
        S3Error,
        SetupError,
    ) as exc:
        logger.error("event=setup_failed error=%s", exc)
        return 1
    logger.info("event=setup_complete status=ok")
    return 0


def _load_and_override_config(args: argparse.Namespace) -> Config:
    if args.config:
        config = load_config(Path(args.config).expanduser().resolve())
    else:
        config = default_config()
    if args.log_level:
        config = config.with_log_level(args.log_level)
    return config


def _parse_level(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        pass
    normalized = value.lower()
    mapping = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }
    if normalized not in mapping:
        raise ConfigError(f"invalid log level: {value}")
    return mapping[normalized]
