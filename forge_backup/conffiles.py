"""Shell-sourceable key-value configuration files."""

from __future__ import annotations

import os
import re
import secrets
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Iterable, Mapping

_ENV_KEY_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PASSWORD_ALPHABET: Final[str] = string.ascii_letters + string.digits

RESTIC_CONF = "restic.conf"
MYSQL_CONF = "mysql.conf"
S3_CONF = "s3.conf"
EXCLUDES_CONF = "excludes.conf"
PASSWORD_CONF = "password.conf"


class ConfFileError(RuntimeError):
    """Raised when a configuration file is missing or malformed."""


@dataclass(frozen=True)
class ResticPaths:
    file_backup_dir: str
    db_backup_dir: str
    backup_target: str

    @staticmethod
    def from_env(values: Mapping[str, str]) -> "ResticPaths":
        return ResticPaths(
            file_backup_dir=_require(values, "FILE_BACKUP_DIR", RESTIC_CONF),
            db_backup_dir=_require(values, "DB_BACKUP_DIR", RESTIC_CONF),
            backup_target=_require(values, "BACKUP_TARGET", RESTIC_CONF),
        )

    def to_env(self) -> dict[str, str]:
        return {
            "FILE_BACKUP_DIR": self.file_backup_dir,
            "DB_BACKUP_DIR": self.db_backup_dir,
            "BACKUP_TARGET": self.backup_target,
        }


@dataclass(frozen=True)
class MySQLCredentials:
    password: str
    user: str
    mysql: str
    mysqldump: str

    @staticmethod
    def from_env(values: Mapping[str, str]) -> "MySQLCredentials":
        return MySQLCredentials(
            password=_require(values, "MYSQL_PASSWORD", MYSQL_CONF),
            user=_require(values, "MYSQL_USER", MYSQL_CONF),
            mysql=_require(values, "MYSQL", MYSQL_CONF),
            mysqldump=_require(values, "MYSQLDUMP", MYSQL_CONF),
        )

    def to_env(self) -> dict[str, str]:
        return {
            "MYSQL_PASSWORD": self.password,
            "MYSQL_USER": self.user,
            "MYSQL": self.mysql,
            "MYSQLDUMP": self.mysqldump,
        }


@dataclass(frozen=True)
class S3Credentials:
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str

    @staticmethod
    def from_env(values: Mapping[str, str]) -> "S3Credentials":
        return S3Credentials(
            access_key_id=_require(values, "AWS_ACCESS_KEY_ID", S3_CONF),
            secret_access_key=_require(values, "AWS_SECRET_ACCESS_KEY", S3_CONF),
            bucket=_require(values, "S3_BUCKET", S3_CONF),
            region=_require(values, "S3_REGION", S3_CONF),
        )

    def to_env(self) -> dict[str, str]:
        return {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
            "S3_BUCKET": self.bucket,
            "S3_REGION": self.region,
        }


def read_env_file(path: Path) -> dict[str, str]:
    """Parse a KEY=VALUE file, accepting the ``export`` prefix and quotes."""
    values: dict[str, str] = {}
    try:
        handle = path.open("r", encoding="utf-8")
    except FileNotFoundError:
        raise ConfFileError(f"config file not found: {path}") from None
    with handle:
        for line_num, raw_line in enumerate(handle, 1):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export ") :].strip()
            if "=" not in line:
                raise ConfFileError(f"{path}:{line_num}: expected KEY=VALUE")
            key, value = line.split("=", 1)
            key = key.strip()
            if not _ENV_KEY_RE.fullmatch(key):
                raise ConfFileError(f"{path}:{line_num}: invalid key {key!r}")
            values[key] = _unquote(value.strip())
    return values


def write_env_file(
    path: Path, values: Mapping[str, str], mode: int = 0o600
) -> None:
    lines = []
    for key, value in values.items():
        if not _ENV_KEY_RE.fullmatch(key):
            raise ConfFileError(f"invalid key {key!r}")
        lines.append(f'export {key}="{_escape(value)}"\n')
    _write_atomic(path, "".join(lines), mode)


def generate_password(length: int = 32) -> str:
    if length <= 0:
        raise ValueError("length must be > 0")
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


class ConfStore:
    """Typed access to the files kept in the configuration directory."""

    def __init__(self, conf_dir: Path) -> None:
        self.conf_dir = conf_dir

    def path(self, name: str) -> Path:
        return self.conf_dir / name

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    def ensure_dir(self) -> None:
        self.conf_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.conf_dir, 0o700)

    def load_restic_paths(self) -> ResticPaths:
        return ResticPaths.from_env(read_env_file(self.path(RESTIC_CONF)))

    def save_restic_paths(self, paths: ResticPaths) -> None:
        write_env_file(self.path(RESTIC_CONF), paths.to_env())

    def load_mysql(self) -> MySQLCredentials:
        return MySQLCredentials.from_env(read_env_file(self.path(MYSQL_CONF)))

    def save_mysql(self, credentials: MySQLCredentials) -> None:
        write_env_file(self.path(MYSQL_CONF), credentials.to_env())

    def load_s3(self) -> S3Credentials:
        return S3Credentials.from_env(read_env_file(self.path(S3_CONF)))

    def save_s3(self, credentials: S3Credentials) -> None:
        write_env_file(self.path(S3_CONF), credentials.to_env())

    def load_excludes(self) -> list[str]:
        path = self.path(EXCLUDES_CONF)
        if not path.is_file():
            raise ConfFileError(f"config file not found: {path}")
        return [
            line.strip()
            for line in path.read_text(encoding="utf-8").splitlines()
            if line.strip() and not line.lstrip().startswith("#")
        ]

    def save_excludes(self, patterns: Iterable[str]) -> None:
        content = "".join(f"{pattern}\n" for pattern in patterns)
        _write_atomic(self.path(EXCLUDES_CONF), content, 0o644)

    def load_password(self) -> str:
        path = self.path(PASSWORD_CONF)
        if not path.is_file():
            raise ConfFileError(f"config file not found: {path}")
        password = path.read_text(encoding="utf-8").strip()
        if not password:
            raise ConfFileError(f"{path}: empty password")
        return password

    def save_password(self, password: str) -> None:
        _write_atomic(self.path(PASSWORD_CONF), f"{password}\n", 0o600)


def _require(values: Mapping[str, str], key: str, name: str) -> str:
    value = values.get(key)
    if not value:
        raise ConfFileError(f"{name} missing {key}")
    return value


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        inner = value[1:-1]
        return re.sub(r'\\([\\"$`])', r"\1", inner)
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1]
    return value


def _escape(value: str) -> str:
    return re.sub(r'([\\"$`])', r"\\\1", value)


def _write_atomic(path: Path, content: str, mode: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.tmp")
    fd = os.open(temp_path, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
    os.chmod(temp_path, mode)
    temp_path.replace(path)
