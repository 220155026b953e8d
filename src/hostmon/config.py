"""Runtime configuration for hostmon, read from HOSTMON_* environment variables."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from hostmon.errors import ValidationError

ENV_PREFIX = "HOSTMON_"


def default_db_path() -> Path:
    """Location of the per-host metrics database."""
    return Path.home() / ".hostmon" / "performance.db"


@dataclass(slots=True)
class HostmonConfig:
    """Tunables for the caches, the probe, the store and the dashboard."""

    db_path: Path = field(default_factory=default_db_path)
    metrics_ttl: float = 5.0
    process_ttl: float = 3.0
    file_tags_ttl: float = 600.0
    search_index_ttl: float = 300.0
    cache_max_keys: int = 1000
    process_limit: int = 10
    optimize_process_limit: int = 20
    probe_timeout: float = 10.0
    disk_path: str = "/"
    disk_io_interval: float = 1.0
    retention: timedelta | None = None
    poll_rate: float = 5.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "HostmonConfig":
        """
        Build a config from environment variables.

        Unset variables keep their defaults. A value that cannot be parsed
        raises ValidationError naming the offending variable.
        """
        env = os.environ if environ is None else environ
        config = cls()

        def lookup(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            if value is None or not value.strip():
                return None
            return value.strip()

        def number(name: str, kind: type, minimum: float = 0) -> float | int | None:
            raw = lookup(name)
            if raw is None:
                return None
            try:
                value = kind(raw)
            except ValueError as exc:
                raise ValidationError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc
            if value < minimum:
                raise ValidationError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {raw!r}")
            return value

        if (raw := lookup("DB_PATH")) is not None:
            config.db_path = Path(raw).expanduser()
        if (raw := lookup("DISK_PATH")) is not None:
            config.disk_path = raw
        if (raw := lookup("LOG_LEVEL")) is not None:
            config.log_level = raw.upper()

        # Sizes and counts need at least one slot
        for name, attr, kind, minimum in (
            ("METRICS_TTL", "metrics_ttl", float, 0),
            ("PROCESS_TTL", "process_ttl", float, 0),
            ("FILE_TAGS_TTL", "file_tags_ttl", float, 0),
            ("SEARCH_INDEX_TTL", "search_index_ttl", float, 0),
            ("CACHE_MAX_KEYS", "cache_max_keys", int, 1),
            ("PROCESS_LIMIT", "process_limit", int, 1),
            ("OPTIMIZE_PROCESS_LIMIT", "optimize_process_limit", int, 1),
            ("PROBE_TIMEOUT", "probe_timeout", float, 0),
            ("DISK_IO_INTERVAL", "disk_io_interval", float, 0),
            ("POLL_RATE", "poll_rate", float, 0),
        ):
            value = number(name, kind, minimum)
            if value is not None:
                setattr(config, attr, value)

        retention_days = number("RETENTION_DAYS", float, minimum=1)
        if retention_days is not None:
            config.retention = timedelta(days=retention_days)

        return config
