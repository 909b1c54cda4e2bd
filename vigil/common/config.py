import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

MIGRATION_UPGRADES = os.path.join(os.path.dirname(__file__), "../", "migrations", "up")

MIGRATION_DOWNGRADES = os.path.join(
    os.path.dirname(__file__), "../", "migrations", "down"
)

DATA_ROOT = ".vigil"
DATABASE = os.path.join(DATA_ROOT, "vigil.sqlite3")

CONFIG_FILE = "vigil.toml"

# Seconds; read-mostly monitors only.
DEFAULT_CACHE_TTLS: Dict[str, int] = {
    "price-alert": 60,
    "portfolio-tracker": 300,
    "defi-monitor": 600,
    "nft-tracker": 1800,
}

DEFAULT_RETRY_CONFIG: Dict[str, Any] = {
    "max_retries": 3,
    "initial_delay": 1000,
    "max_delay": 30000,
    "backoff_multiplier": 2.0,
    "retry_conditions": [
        "network_error",
        "timeout",
        "rate_limit",
        "temporary_failure",
    ],
}


@dataclass(frozen=True)
class Settings:
    """Engine settings resolved from ``vigil.toml`` and the environment."""

    database: str = DATABASE
    log_level: str = "INFO"
    poll_interval: float = 60.0
    batch_max_parallel: int = 5
    batch_chunk_delay: float = 1.0
    retention_days: int = 30
    cache_ttls: Dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_CACHE_TTLS)
    )
    default_retry: Dict[str, Any] = field(
        default_factory=lambda: dict(DEFAULT_RETRY_CONFIG)
    )


def _load_config(path: Path | None = None) -> dict:
    """Load configuration from vigil.toml if it exists."""
    config_path = path or Path.cwd() / CONFIG_FILE
    if config_path.exists():
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    return {}


def load_settings(path: Path | None = None) -> Settings:
    """Build :class:`Settings` from the config file.

    Recognised tables::

        [database]  path
        [logging]   level
        [scheduler] poll_interval
        [batch]     max_parallel, chunk_delay
        [retention] days
        [cache.ttl] <task-type> = seconds
        [retry]     max_retries, initial_delay, max_delay,
                    backoff_multiplier, retry_conditions

    ``VIGIL_DATABASE`` overrides the database path.
    """
    config = _load_config(path)

    cache_ttls = dict(DEFAULT_CACHE_TTLS)
    cache_ttls.update(config.get("cache", {}).get("ttl", {}))

    default_retry = dict(DEFAULT_RETRY_CONFIG)
    default_retry.update(config.get("retry", {}))

    database = os.getenv("VIGIL_DATABASE") or config.get("database", {}).get(
        "path", DATABASE
    )

    batch = config.get("batch", {})
    max_parallel = int(batch.get("max_parallel", 5))
    if max_parallel < 1:
        raise ValueError(f"Invalid batch.max_parallel: {max_parallel}. Must be >= 1")

    return Settings(
        database=database,
        log_level=str(config.get("logging", {}).get("level", "INFO")).upper(),
        poll_interval=float(config.get("scheduler", {}).get("poll_interval", 60.0)),
        batch_max_parallel=max_parallel,
        batch_chunk_delay=float(batch.get("chunk_delay", 1.0)),
        retention_days=int(config.get("retention", {}).get("days", 30)),
        cache_ttls=cache_ttls,
        default_retry=default_retry,
    )
