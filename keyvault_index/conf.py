"""
Index Configuration — Validated settings for caches, crawler and service.

Reads settings from environment variables prefixed with ``KVINDEX_``:
    KVINDEX_CACHE_DIR = <directory holding cache.dat, cache.salt, cache.iv>
    KVINDEX_KDF_ITERATIONS = <PBKDF2 iterations, default 100000>
    KVINDEX_BATCH_SIZE = <vaults crawled concurrently, default 5>
    KVINDEX_VAULT_TIMEOUT = <seconds allowed per vault crawl, default 120>
    KVINDEX_SCHEDULE_MINUTES = <minutes between scheduled passes, default 60>
    KVINDEX_INCLUDE_VALUES = <"1"/"true" to keep values in the session index>

Security Note:
    The cache password is never part of the configuration. It is supplied
    by the caller at load/save time and never stored.
"""
import os
import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("keyvault_index.conf")

_ENV_PREFIX = "KVINDEX_"
_TRUE_VALUES = ("1", "true", "yes", "on")


def default_cache_dir() -> Path:
    """Return the per-user directory holding the encrypted cache.

    Honors ``XDG_CONFIG_HOME`` when set, ``~/.config`` otherwise.
    """
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "keyvault-index"


def _env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(f"{_ENV_PREFIX}{name}", default)


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean ``KVINDEX_<name>`` environment variable."""
    raw = _env(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


class IndexConfig(BaseModel):
    """Validated index configuration."""

    cache_dir: Path = Field(default_factory=default_cache_dir)
    kdf_iterations: int = Field(default=100_000, ge=1)
    batch_size: int = Field(default=5, ge=1, le=100)
    vault_timeout: float = Field(default=120.0, gt=0)
    schedule_minutes: int = Field(default=60, ge=1)
    include_values: bool = False
    search_limit: int = Field(default=100, ge=1)
    fuzzy_threshold: float = Field(default=0.7, gt=0, le=1)
    critical_days: int = Field(default=30, ge=0)
    warning_days: int = Field(default=60, ge=0)
    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=1, le=65535)

    @field_validator("cache_dir")
    @classmethod
    def expand_cache_dir(cls, v: Path) -> Path:
        """Expand ``~`` in the cache directory."""
        return Path(v).expanduser()

    @model_validator(mode="after")
    def validate_thresholds(self) -> "IndexConfig":
        """Ensure the warning window is not shorter than the critical one."""
        if self.warning_days < self.critical_days:
            raise ValueError(
                f"warning_days ({self.warning_days}) must be >= "
                f"critical_days ({self.critical_days})"
            )
        return self

    @property
    def cache_file(self) -> Path:
        return self.cache_dir / "cache.dat"

    @property
    def salt_file(self) -> Path:
        return self.cache_dir / "cache.salt"

    @property
    def iv_file(self) -> Path:
        return self.cache_dir / "cache.iv"

    @classmethod
    def from_env(cls) -> "IndexConfig":
        """Create IndexConfig by loading values from environment.

        Unset variables fall back to the field defaults.

        Returns:
            Populated IndexConfig instance.
        """
        values: dict = {}
        mapping = {
            "CACHE_DIR": "cache_dir",
            "KDF_ITERATIONS": "kdf_iterations",
            "BATCH_SIZE": "batch_size",
            "VAULT_TIMEOUT": "vault_timeout",
            "SCHEDULE_MINUTES": "schedule_minutes",
            "SEARCH_LIMIT": "search_limit",
            "CRITICAL_DAYS": "critical_days",
            "WARNING_DAYS": "warning_days",
            "HOST": "host",
            "PORT": "port",
        }
        for env_name, field in mapping.items():
            raw = _env(env_name)
            if raw is not None:
                values[field] = raw
        values["include_values"] = env_flag("INCLUDE_VALUES")
        config = cls(**values)
        logger.debug(
            "Loaded index config: cache_dir=%s batch_size=%d include_values=%s",
            config.cache_dir, config.batch_size, config.include_values,
        )
        return config
