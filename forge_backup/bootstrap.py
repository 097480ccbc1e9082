"""First-time setup of restic, the MySQL backup account and S3 settings.

Every step checks whether its file already exists and leaves existing
configuration untouched, so ``setup`` can be rerun safely after an upgrade
to refresh the wrapper scripts.
"""

from __future__ import annotations

import getpass
import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from forge_backup.conffiles import (
    EXCLUDES_CONF,
    MYSQL_CONF,
    PASSWORD_CONF,
    RESTIC_CONF,
    S3_CONF,
    ConfStore,
    MySQLCredentials,
    ResticPaths,
    S3Credentials,
    generate_password,
)
from forge_backup.config import Config
from forge_backup.mysql import MySQLClient
from forge_backup.restic import ResticRepository
from forge_backup.runner import CommandRunner
from forge_backup.s3 import ensure_bucket, get_s3_client
from forge_backup.scripts import write_wrapper_scripts

RULE = "-" * 40

CHECKLIST = (
    "- [ ] run a MySQL backup with mysql-backup.sh",
    "- [ ] run a filesystem backup with restic-backup.sh",
    "- [ ] mount and verify backups with restic-mount.sh",
    "- [ ] add scheduler job for restic-backup.sh",
)


class SetupError(RuntimeError):
    """Raised when setup cannot continue."""


class Prompter:
    """Terminal prompts; replaced by a scripted double in tests."""

    def __init__(
        self,
        secret_input: Callable[[str], str] = getpass.getpass,
        line_input: Callable[[str], str] = input,
    ) -> None:
        self.secret_input = secret_input
        self.line_input = line_input

    def secret(self, prompt: str) -> str:
        return self.secret_input(prompt).strip()

    def confirm(self, prompt: str) -> bool:
        while True:
            answer = self.line_input(f"{prompt} [y/n] ").strip().lower()
            if answer[:1] == "y":
                return True
            if answer[:1] == "n":
                return False
            print("Please answer yes or no.")


@dataclass(frozen=True)
class SetupOptions:
    skip_install: bool = False
    init_repo: bool | None = None
    create_bucket: bool = False
    config_path: Path | None = None
    python: str = sys.executable


class Bootstrap:
    def __init__(
        self,
        config: Config,
        runner: CommandRunner,
        prompter: Prompter | None = None,
        s3_client_factory: Callable[[S3Credentials], object] = get_s3_client,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.prompter = prompter or Prompter()
        self.s3_client_factory = s3_client_factory
        self.store = ConfStore(config.global_cfg.conf_dir)
        self.logger = logger or logging.getLogger(__name__)

    def run(self, options: SetupOptions) -> None:
        _banner("Forge Backup")
        pending_s3 = None
        if not self.store.exists(S3_CONF):
            pending_s3 = self.prompt_s3_credentials()

        self.install_restic(options.skip_install)
        self.ensure_directories()
        self.ensure_mysql_account()
        self.ensure_excludes()
        self.ensure_s3_settings(pending_s3)
        self.ensure_repository_password()
        scripts = write_wrapper_scripts(
            self.config.global_cfg.script_dir, options.python, options.config_path
        )
        for path in scripts:
            self.logger.info("event=wrapper_written path=%s", path)

        init_repo = options.init_repo
        if init_repo is None:
            print("")
            init_repo = self.prompter.confirm(
                "Do you want to initialize the restic repo now?"
            )
        if init_repo:
            self.initialize_repository(options.create_bucket)
        else:
            self.logger.info("event=repository_init status=skipped")
        _print_checklist()

    def prompt_s3_credentials(self) -> S3Credentials:
        values = {}
        for key, prompt in (
            ("access_key_id", "Enter AWS Access Key ID: "),
            ("secret_access_key", "Enter AWS Secret Access Key: "),
            ("bucket", "Enter S3 bucket: "),
            ("region", "Enter S3 region: "),
        ):
            value = self.prompter.secret(prompt)
            if not value:
                raise SetupError(f"{prompt.strip().rstrip(':')} is required")
            values[key] = value
        return S3Credentials(**values)

    def install_restic(self, skip: bool) -> None:
        _banner("Installing restic...")
        restic_bin = self.config.restic.restic_bin
        if skip:
            self.logger.info("event=restic_install status=skipped reason=flag")
            return
        if Path(restic_bin).exists() or shutil.which(restic_bin):
            print(f"✓ found restic at {restic_bin}")
            return
        self.runner.run(["apt-get", "install", "-y", "restic"])
        self.logger.info("event=restic_install status=ok")

    def ensure_directories(self) -> None:
        paths = self.config.paths
        if not self.store.conf_dir.is_dir():
            _banner(f"Creating {self.store.conf_dir}...")
            self.store.ensure_dir()
            for directory in (paths.file_backup_dir, paths.db_backup_dir):
                directory.mkdir(parents=True, exist_ok=True)
                self._chown(directory)
        if self.store.exists(RESTIC_CONF):
            return
        self.store.save_restic_paths(
            ResticPaths(
                file_backup_dir=str(paths.file_backup_dir),
                db_backup_dir=str(paths.db_backup_dir),
                backup_target=str(paths.backup_target),
            )
        )

    def ensure_mysql_account(self) -> MySQLCredentials:
        _banner("Confirming MySQL setup...")
        if self.store.exists(MYSQL_CONF):
            print("✓ found MySQL backup password")
            return self.store.load_mysql()

        mysql_cfg = self.config.mysql
        admin_password = self.prompter.secret(
            f"Enter MySQL password for user '{mysql_cfg.admin_user}': "
        )
        credentials = MySQLCredentials(
            password=generate_password(),
            user=mysql_cfg.backup_user,
            mysql=mysql_cfg.mysql_bin,
            mysqldump=mysql_cfg.mysqldump_bin,
        )
        client = MySQLClient(mysql_cfg.mysql_bin, self.runner, host=mysql_cfg.host)
        client.create_backup_user(
            mysql_cfg.admin_user,
            admin_password,
            credentials.user,
            credentials.password,
            host=mysql_cfg.host,
        )
        self.store.save_mysql(credentials)
        print(f"!! created backup user with password: {credentials.password}")
        return credentials

    def ensure_excludes(self) -> None:
        _banner("Confirming restic repository...")
        if self.store.exists(EXCLUDES_CONF):
            print("✓ found backup exclude file")
            return
        self.store.save_excludes(self.config.restic.excludes)
        print(f"created {self.store.path(EXCLUDES_CONF)}")

    def ensure_s3_settings(self, pending: S3Credentials | None) -> None:
        if self.store.exists(S3_CONF):
            print("✓ found S3 settings")
            return
        if pending is None:
            pending = self.prompt_s3_credentials()
        self.store.save_s3(pending)
        print("wrote S3 settings")

    def ensure_repository_password(self) -> None:
        if self.store.exists(PASSWORD_CONF):
            print("✓ found restic password")
            return
        password = generate_password()
        self.store.save_password(password)
        print(f"!! generated restic repository password: {password}")

    def initialize_repository(self, create_bucket: bool = False) -> None:
        credentials = self.store.load_s3()
        created = ensure_bucket(
            self.s3_client_factory(credentials),
            credentials.bucket,
            credentials.region,
            create=create_bucket,
        )
        if created:
            self.logger.info("event=bucket_created bucket=%s", credentials.bucket)
        repository = ResticRepository(
            self.config.restic.restic_bin,
            credentials,
            self.store.path(PASSWORD_CONF),
            self.runner,
            endpoint=self.config.restic.s3_endpoint,
        )
        repository.init()
        self.logger.info("event=repository_init status=ok url=%s", repository.url)

    def _chown(self, directory: Path) -> None:
        owner = self.config.paths.owner
        if not owner:
            return
        try:
            shutil.chown(directory, user=owner, group=owner)
        except (LookupError, PermissionError) as exc:
            self.logger.warning(
                "event=backup_dir_chown_failed path=%s owner=%s error=%s",
                directory,
                owner,
                exc,
            )
            print(f"!! could not chown {directory} to {owner}: {exc}")


def _banner(title: str) -> None:
    print("")
    print(RULE)
    print(title)
    print(RULE)
    print("")


def _print_checklist() -> None:
    print("")
    print(RULE)
    print("Looking good!")
    print("")
    print("Don't forget to finish setting up restic!")
    print("")
    for item in CHECKLIST:
        print(item)
    print(RULE)
