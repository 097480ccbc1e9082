"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for 3.10
    import tomli as tomllib  # type: ignore[no-redef]

DEFAULT_LOG_LEVEL = "info"
DEFAULT_CONF_DIR = "/root/restic/conf"
DEFAULT_SCRIPT_DIR = "/root/restic"
DEFAULT_STATE_PATH = "/root/restic/state.json"
DEFAULT_LOCK_PATH = "/var/lock/forge_backup.lock"
DEFAULT_FILE_BACKUP_DIR = "//files"
DEFAULT_DB_BACKUP_DIR = "//mysqldump"
DEFAULT_BACKUP_TARGET = "/home/forge"
DEFAULT_MOUNT_POINT = "/mnt/restic"
DEFAULT_OWNER = "forge"
DEFAULT_MYSQL_BIN = "/usr/bin/mysql"
DEFAULT_MYSQLDUMP_BIN = "/usr/bin/mysqldump"
DEFAULT_MYSQL_HOST = "localhost"
DEFAULT_MYSQL_ADMIN_USER = "forge"
DEFAULT_MYSQL_BACKUP_USER = "backup"
DEFAULT_EXCLUDED_SCHEMAS = ("information_schema", "performance_schema", "mysql")
DEFAULT_DUMP_RETENTION_DAYS = 7
DEFAULT_RESTIC_BIN = "/usr/bin/restic"
DEFAULT_S3_ENDPOINT = "s3.amazonaws.com"
DEFAULT_EXCLUDES = (".git/*",)
DEFAULT_KEEP_DAILY = 7
DEFAULT_KEEP_WEEKLY = 4
DEFAULT_KEEP_MONTHLY = 12
DEFAULT_KEEP_YEARLY = 2


class ConfigError(ValueError):
    """Raised when configuration is invalid."""


@dataclass(frozen=True)
class GlobalConfig:
    log_level: str
    conf_dir: Path
    script_dir: Path
    state_path: Path
    lock_path: Path


@dataclass(frozen=True)
class PathsConfig:
    file_backup_dir: Path
    db_backup_dir: Path
    backup_target: Path
    mount_point: Path
    owner: str | None


@dataclass(frozen=True)
class MySQLConfig:
    mysql_bin: str
    mysqldump_bin: str
    host: str
    admin_user: str
    backup_user: str
    excluded_schemas: tuple[str, ...]


@dataclass(frozen=True)
class DumpsConfig:
    retention_days: int


@dataclass(frozen=True)
class ResticConfig:
    restic_bin: str
    s3_endpoint: str
    excludes: tuple[str, ...]


@dataclass(frozen=True)
class RetentionConfig:
    keep_daily: int
    keep_weekly: int
    keep_monthly: int
    keep_yearly: int


@dataclass(frozen=True)
class Config:
    global_cfg: GlobalConfig
    paths: PathsConfig
    mysql: MySQLConfig
    dumps: DumpsConfig
    restic: ResticConfig
    retention: RetentionConfig

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Config":
        global_data = data.get("global", {})
        paths_data = data.get("paths", {})
        mysql_data = data.get("mysql", {})
        dumps_data = data.get("dumps", {})
        restic_data = data.get("restic", {})
        retention_data = data.get("retention", {})

        global_cfg = GlobalConfig(
            log_level=str(global_data.get("log_level", DEFAULT_LOG_LEVEL)),
            conf_dir=_expand_path(global_data.get("conf_dir", DEFAULT_CONF_DIR)),
            script_dir=_expand_path(
                global_data.get("script_dir", DEFAULT_SCRIPT_DIR)
            ),
            state_path=_expand_path(
                global_data.get("state_path", DEFAULT_STATE_PATH)
            ),
            lock_path=_expand_path(global_data.get("lock_path", DEFAULT_LOCK_PATH)),
        )
        owner = paths_data.get("owner", DEFAULT_OWNER)
        paths = PathsConfig(
            file_backup_dir=_expand_path(
                paths_data.get("file_backup_dir", DEFAULT_FILE_BACKUP_DIR)
            ),
            db_backup_dir=_expand_path(
                paths_data.get("db_backup_dir", DEFAULT_DB_BACKUP_DIR)
            ),
            backup_target=_expand_path(
                paths_data.get("backup_target", DEFAULT_BACKUP_TARGET)
            ),
            mount_point=_expand_path(
                paths_data.get("mount_point", DEFAULT_MOUNT_POINT)
            ),
            owner=str(owner) if owner else None,
        )
        mysql = MySQLConfig(
            mysql_bin=str(mysql_data.get("mysql_bin", DEFAULT_MYSQL_BIN)),
            mysqldump_bin=str(
                mysql_data.get("mysqldump_bin", DEFAULT_MYSQLDUMP_BIN)
            ),
            host=str(mysql_data.get("host", DEFAULT_MYSQL_HOST)),
            admin_user=str(
                mysql_data.get("admin_user", DEFAULT_MYSQL_ADMIN_USER)
            ),
            backup_user=str(
                mysql_data.get("backup_user", DEFAULT_MYSQL_BACKUP_USER)
            ),
            excluded_schemas=tuple(
                str(name)
                for name in mysql_data.get(
                    "excluded_schemas", DEFAULT_EXCLUDED_SCHEMAS
                )
            ),
        )
        dumps = DumpsConfig(
            retention_days=int(
                dumps_data.get("retention_days", DEFAULT_DUMP_RETENTION_DAYS)
            ),
        )
        restic = ResticConfig(
            restic_bin=str(restic_data.get("restic_bin", DEFAULT_RESTIC_BIN)),
            s3_endpoint=str(
                restic_data.get("s3_endpoint", DEFAULT_S3_ENDPOINT)
            ),
            excludes=tuple(
                str(pattern)
                for pattern in restic_data.get("excludes", DEFAULT_EXCLUDES)
            ),
        )
        retention = RetentionConfig(
            keep_daily=int(retention_data.get("keep_daily", DEFAULT_KEEP_DAILY)),
            keep_weekly=int(
                retention_data.get("keep_weekly", DEFAULT_KEEP_WEEKLY)
            ),
            keep_monthly=int(
                retention_data.get("keep_monthly", DEFAULT_KEEP_MONTHLY)
            ),
            keep_yearly=int(
                retention_data.get("keep_yearly", DEFAULT_KEEP_YEARLY)
            ),
        )
        config = Config(
            global_cfg=global_cfg,
            paths=paths,
            mysql=mysql,
            dumps=dumps,
            restic=restic,
            retention=retention,
        )
        validate_config(config)
        return config

    def with_log_level(self, log_level: str) -> "Config":
        config = replace(
            self, global_cfg=replace(self.global_cfg, log_level=log_level)
        )
        validate_config(config)
        return config


def default_config() -> Config:
    return Config.from_dict({})


def load_config(path: Path) -> Config:
    if not path.is_absolute():
        raise ConfigError(f"config path must be absolute: {path}")
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except OSError as exc:
        raise ConfigError(f"failed to read config: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"failed to parse config: {exc}") from exc
    return Config.from_dict(data)


def validate_config(config: Config) -> None:
    _validate_log_level(config.global_cfg.log_level)
    _validate_path(config.global_cfg.conf_dir, "global.conf_dir")
    _validate_path(config.global_cfg.script_dir, "global.script_dir")
    _validate_path(config.global_cfg.state_path, "global.state_path")
    _validate_path(config.global_cfg.lock_path, "global.lock_path")

    _validate_path(config.paths.file_backup_dir, "paths.file_backup_dir")
    _validate_path(config.paths.db_backup_dir, "paths.db_backup_dir")
    _validate_path(config.paths.backup_target, "paths.backup_target")
    _validate_path(config.paths.mount_point, "paths.mount_point")

    if not config.mysql.mysql_bin:
        raise ConfigError("mysql.mysql_bin is required")
    if not config.mysql.mysqldump_bin:
        raise ConfigError("mysql.mysqldump_bin is required")
    if not config.mysql.host:
        raise ConfigError("mysql.host is required")
    if not config.mysql.admin_user:
        raise ConfigError("mysql.admin_user is required")
    if not config.mysql.backup_user:
        raise ConfigError("mysql.backup_user is required")

    _validate_positive(config.dumps.retention_days, "dumps.retention_days")

    if not config.restic.restic_bin:
        raise ConfigError("restic.restic_bin is required")
    if not config.restic.s3_endpoint:
        raise ConfigError("restic.s3_endpoint is required")

    retention = config.retention
    counts = {
        "retention.keep_daily": retention.keep_daily,
        "retention.keep_weekly": retention.keep_weekly,
        "retention.keep_monthly": retention.keep_monthly,
        "retention.keep_yearly": retention.keep_yearly,
    }
    for field, value in counts.items():
        if value < 0:
            raise ConfigError(f"{field} must be >= 0")
    if not any(counts.values()):
        raise ConfigError("retention must keep at least one snapshot")


def _expand_path(raw: Any) -> Path:
    return Path(str(raw)).expanduser()


def _validate_path(path: Path, field: str) -> None:
    if not path.is_absolute():
        raise ConfigError(f"{field} must be an absolute path: {path}")


def _validate_positive(value: int, field: str) -> None:
    if value <= 0:
        raise ConfigError(f"{field} must be > 0")


def _validate_log_level(value: str) -> None:
    valid = {"debug", "info", "warning", "error", "critical"}
    if value.lower() not in valid:
        raise ConfigError(
            f"global.log_level must be one of {sorted(valid)}; got {value}"
        )
