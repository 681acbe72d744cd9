import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


# Storage prefixes understood by wal-g, checked in this order
STORAGE_PREFIX_KEYS = (
    'WALG_SSH_PREFIX',
    'WALG_S3_PREFIX',
    'WALG_GS_PREFIX',
    'WALG_AZ_PREFIX',
    'WALG_FILE_PREFIX',
)

DEFAULT_ENV_FILE = '/var/lib/postgresql/.walg_env'
DEFAULT_PGDATA = '/var/lib/postgresql/data'


class ConfigError(Exception):
    """Raised when required configuration is missing or malformed."""
    pass


class Config:
    """Base configuration"""

    # Data directory and external tool
    PGDATA = os.environ.get('PGDATA') or DEFAULT_PGDATA
    WALG_BINARY = os.environ.get('WALG_BINARY') or 'wal-g'
    WALG_ENV_FILE = os.environ.get('WALG_ENV_FILE') or DEFAULT_ENV_FILE

    # Remote destination
    WALG_SSH_PREFIX = os.environ.get('WALG_SSH_PREFIX')
    WALG_S3_PREFIX = os.environ.get('WALG_S3_PREFIX')
    WALG_GS_PREFIX = os.environ.get('WALG_GS_PREFIX')
    WALG_AZ_PREFIX = os.environ.get('WALG_AZ_PREFIX')
    WALG_FILE_PREFIX = os.environ.get('WALG_FILE_PREFIX')

    # Backup and retention
    FORCE_FULL = os.environ.get('FORCE_FULL', '0')
    WALG_RETENTION_FULL = os.environ.get('WALG_RETENTION_FULL', '7')
    WALG_RETENTION_DAYS = os.environ.get('WALG_RETENTION_DAYS')

    # State (locks, logs, status files); defaults to PGDATA
    WALG_STATE_DIR = os.environ.get('WALG_STATE_DIR')

    # Notifications
    TELEGRAM_BOT_TOKEN = os.environ.get('TELEGRAM_BOT_TOKEN')
    TELEGRAM_CHAT_ID = os.environ.get('TELEGRAM_CHAT_ID')
    TELEGRAM_MESSAGE_PREFIX = os.environ.get('TELEGRAM_MESSAGE_PREFIX') or 'WAL-G'
    TELEGRAM_API_URL = os.environ.get('TELEGRAM_API_URL') or 'https://api.telegram.org'

    # Database (run history); None means <state dir>/walg_runner.db
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Scheduler
    BACKUP_CRON_SCHEDULE = os.environ.get('BACKUP_CRON_SCHEDULE') or '0 2 * * *'
    SCHEDULE_MODE = os.environ.get('SCHEDULE_MODE') or 'combo'
    SCHEDULER_TIMEZONE = 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    WALG_STATE_DIR = os.environ.get('WALG_STATE_DIR') or DATA_DIR


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WALG_ENV_FILE = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def read_env_file(path: Optional[str]) -> dict:
    """
    Parse a shell-style environment file.

    Accepts ``KEY=value`` and ``export KEY="value"`` lines; blank lines and
    ``#`` comments are ignored. A missing file yields an empty dict.

    Args:
        path: Path to the environment file (None disables it)

    Returns:
        Dict of variables defined in the file
    """
    if not path or not os.path.isfile(path):
        return {}

    values = {}
    with open(path, 'r') as f:
        for raw_line in f:
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            if line.startswith('export '):
                line = line[len('export '):].lstrip()
            if '=' not in line:
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            if key:
                values[key] = value

    return values


def _parse_flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_int(name: str, value, default: Optional[int]) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if number < 0:
        raise ConfigError(f"{name} must not be negative, got {number}")
    return number


@dataclass(frozen=True)
class RunnerSettings:
    """
    Immutable runner configuration.

    Built once at process start from the Flask config and handed to every
    component constructor.
    """

    pgdata: str
    walg_binary: str = 'wal-g'
    storage_prefix_key: Optional[str] = None
    storage_prefix: Optional[str] = None
    force_full: bool = False
    retention_full: int = 7
    retention_days: Optional[int] = None
    state_dir: str = ''
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    telegram_message_prefix: str = 'WAL-G'
    telegram_api_url: str = 'https://api.telegram.org'
    tool_env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_config(cls, cfg: Mapping) -> 'RunnerSettings':
        """
        Build settings from a Flask config (or any mapping).

        Raises:
            ConfigError: If an integer setting is malformed
        """
        pgdata = cfg.get('PGDATA') or DEFAULT_PGDATA

        prefix_key, prefix = _find_storage_prefix(cfg)

        retention_days = _parse_int('WALG_RETENTION_DAYS', cfg.get('WALG_RETENTION_DAYS'), None)
        if retention_days == 0:
            retention_days = None

        return cls(
            pgdata=pgdata,
            walg_binary=cfg.get('WALG_BINARY') or 'wal-g',
            storage_prefix_key=prefix_key,
            storage_prefix=prefix,
            force_full=_parse_flag(cfg.get('FORCE_FULL')),
            retention_full=_parse_int('WALG_RETENTION_FULL', cfg.get('WALG_RETENTION_FULL'), 7),
            retention_days=retention_days,
            state_dir=cfg.get('WALG_STATE_DIR') or pgdata,
            telegram_bot_token=cfg.get('TELEGRAM_BOT_TOKEN') or None,
            telegram_chat_id=cfg.get('TELEGRAM_CHAT_ID') or None,
            telegram_message_prefix=cfg.get('TELEGRAM_MESSAGE_PREFIX') or 'WAL-G',
            telegram_api_url=cfg.get('TELEGRAM_API_URL') or 'https://api.telegram.org',
            tool_env=MappingProxyType(dict(cfg.get('WALG_TOOL_ENV') or {})),
        )

    @property
    def lock_dir(self) -> Path:
        return Path(self.state_dir) / 'walg_locks'

    @property
    def log_dir(self) -> Path:
        return Path(self.state_dir) / 'walg_logs'

    @property
    def backup_status_file(self) -> Path:
        return Path(self.state_dir) / 'walg_basebackup.last'

    @property
    def cleanup_status_file(self) -> Path:
        return Path(self.state_dir) / 'walg_cleanup.last'


def _find_storage_prefix(cfg: Mapping) -> Tuple[Optional[str], Optional[str]]:
    for key in STORAGE_PREFIX_KEYS:
        value = cfg.get(key)
        if value:
            return key, value
    return None, None
