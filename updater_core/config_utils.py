import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_ENV_FILE = '/etc/n8n-upgrade/.env'
DEFAULT_GRACE_PERIOD = 3


@dataclass(frozen=True)
class Settings:
    log_level: str = 'INFO'
    log_format: str = 'plain'
    log_file: Optional[str] = None
    grace_period: int = DEFAULT_GRACE_PERIOD  # seconds between recreate and re-inspection
    compose_timeout: Optional[int] = None  # None lets compose calls run unbounded
    webhook_url: Optional[str] = None


def _int_or(value: Optional[str], default):
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_env_file(logger=None, path: Optional[str] = None) -> bool:
    """Load KEY=VALUE pairs from a dotenv file without overriding the real environment."""
    path = path or os.getenv('N8N_UPGRADE_ENV_FILE', DEFAULT_ENV_FILE)
    if not os.path.exists(path):
        return False
    try:
        loaded = load_dotenv(path, override=False)
    except OSError as e:
        if logger:
            logger.warning(f"Failed to load environment file {path}: {e}")
        return False
    if logger:
        logger.debug(f"Loaded environment variables from {path}")
    return loaded


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    grace_period = _int_or(env.get('GRACE_PERIOD'), DEFAULT_GRACE_PERIOD)
    return Settings(
        log_level=env.get('LOG_LEVEL', 'INFO').upper(),
        log_format=env.get('LOG_FORMAT', 'plain').lower(),
        log_file=env.get('LOG_FILE') or None,
        grace_period=max(grace_period, 0),
        compose_timeout=_int_or(env.get('COMPOSE_TIMEOUT'), None),
        webhook_url=env.get('WEBHOOK_URL') or None,
    )
