"""MySQL client invocations."""

from __future__ import annotations

import re
from typing import Iterable

from forge_backup.runner import CommandRunner

BACKUP_GRANTS = "SELECT, SHOW VIEW, PROCESS, LOCK TABLES"

_ACCOUNT_RE = re.compile(r"^[A-Za-z0-9_.%-]+$")


class MySQLError(RuntimeError):
    """Raised on invalid MySQL account input."""


class MySQLClient:
    def __init__(
        self,
        mysql_bin: str,
        runner: CommandRunner,
        host: str = "localhost",
        excluded_schemas: Iterable[str] = (),
    ) -> None:
        self.mysql_bin = mysql_bin
        self.runner = runner
        self.host = host
        self.excluded_schemas = frozenset(excluded_schemas)

    def execute(self, user: str, password: str, statement: str) -> str:
        result = self.runner.run(
            [
                self.mysql_bin,
                f"--user={user}",
                f"--host={self.host}",
                "--batch",
                "--skip-column-names",
                f"--execute={statement}",
            ],
            env={"MYSQL_PWD": password},
        )
        return result.stdout or ""

    def create_backup_user(
        self,
        admin_user: str,
        admin_password: str,
        user: str,
        password: str,
        host: str = "localhost",
    ) -> None:
        """Create a read-only account able to run consistent dumps."""
        account = f"{_quote(_account_part(user))}@{_quote(_account_part(host))}"
        for statement in (
            f"CREATE USER {account} IDENTIFIED BY {_quote(password)};",
            f"GRANT {BACKUP_GRANTS} ON *.* TO {account};",
            "FLUSH PRIVILEGES;",
        ):
            self.execute(admin_user, admin_password, statement)

    def list_databases(self, user: str, password: str) -> list[str]:
        output = self.execute(user, password, "SHOW DATABASES;")
        databases = []
        for line in output.splitlines():
            name = line.strip()
            if not name or name in self.excluded_schemas:
                continue
            databases.append(name)
        return databases


def _account_part(value: str) -> str:
    if not _ACCOUNT_RE.fullmatch(value):
        raise MySQLError(f"invalid account name: {value!r}")
    return value


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"
