"""
Environment configuration for the league site.

All settings are read once at process start. A missing variable that the
selected store backend needs is fatal: ``Config.from_env`` raises
``ConfigError`` and the app refuses to start.
"""
import os
from dataclasses import dataclass
from typing import Optional

BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
DEFAULT_DATA_DIR = os.path.join(BASE_DIR, 'data')

STORE_BACKENDS = ('yaml', 'mongo')
REQUIRED_MONGO_VARS = ('MONGODB_URL', 'MONGODB_DATABASE')


class ConfigError(RuntimeError):
    """Raised when the environment cannot produce a usable configuration."""


def _env_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(environ, name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f'{name} must be an integer, got {raw!r}')


@dataclass
class Config:
    store_backend: str = 'yaml'
    data_dir: str = DEFAULT_DATA_DIR
    mongodb_url: Optional[str] = None
    mongodb_database: Optional[str] = None
    secret_key: Optional[str] = None
    cache_stale_after_ms: int = 30_000
    cache_retry_on_error: bool = False
    openai_api_key: Optional[str] = None
    openai_base_url: str = 'https://api.openai.com/v1'
    openai_model: str = 'gpt-3.5-turbo'
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ=None) -> 'Config':
        """Build a Config from environment variables."""
        environ = os.environ if environ is None else environ

        backend = environ.get('LEAGUE_STORE', 'yaml').strip().lower()
        if backend not in STORE_BACKENDS:
            raise ConfigError(f'LEAGUE_STORE must be one of {", ".join(STORE_BACKENDS)}, got {backend!r}')

        if backend == 'mongo':
            missing = [name for name in REQUIRED_MONGO_VARS if not environ.get(name)]
            if missing:
                raise ConfigError(f'Missing required environment variables: {", ".join(missing)}')

        stale_after_ms = _env_int(environ, 'CACHE_STALE_AFTER_MS', 30_000)
        if stale_after_ms < 0:
            raise ConfigError('CACHE_STALE_AFTER_MS must not be negative')

        return cls(
            store_backend=backend,
            data_dir=environ.get('LEAGUE_DATA_DIR', DEFAULT_DATA_DIR),
            mongodb_url=environ.get('MONGODB_URL'),
            mongodb_database=environ.get('MONGODB_DATABASE'),
            secret_key=environ.get('SECRET_KEY'),
            cache_stale_after_ms=stale_after_ms,
            cache_retry_on_error=_env_bool(environ.get('CACHE_RETRY_ON_ERROR')),
            openai_api_key=environ.get('OPENAI_API_KEY') or None,
            openai_base_url=environ.get('OPENAI_BASE_URL', 'https://api.openai.com/v1').rstrip('/'),
            openai_model=environ.get('OPENAI_MODEL', 'gpt-3.5-turbo'),
            log_level=environ.get('LOG_LEVEL', 'INFO').upper(),
        )
