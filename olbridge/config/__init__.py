"""Configuration accessors.

Two layers live here:

* Ambient process settings (database path, log level) parsed from the
  environment, the same way the host application configures its own
  record store.
* ``CatalogSettings``: the catalog integration options. These are never
  read from the environment; the host process selects them (for a Flask
  host through ``app.config`` keys prefixed with ``OLBRIDGE_``).
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

APP_NAME = "olbridge"
APP_VERSION = "0.4.0"

DEFAULT_DB_PATH = "olbridge.db"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_UPSTREAM_BASE_URL = "https://openlibrary.org"
COVERS_BASE_URL = "https://covers.openlibrary.org"
SETTINGS_PREFIX = "OLBRIDGE_"
_TRUE = {"1", "true", "yes", "on"}


def _raw_env(name: str, default: str | None = None) -> str | None:
    val = os.getenv(name)
    return val if val is not None else default


def env_bool(name: str, default: bool = False) -> bool:
    raw = _raw_env(name, str(default).lower())
    if raw is None:
        return default
    return raw.lower() in _TRUE


def get_db_path() -> str:
    raw = _raw_env("OLBRIDGE_DB_PATH", DEFAULT_DB_PATH)
    if raw and raw != ":memory:" and not os.path.isabs(raw):
        data_root = os.getenv("OLBRIDGE_DATA_DIR")
        if data_root:
            return os.path.join(data_root, raw)
    return raw  # type: ignore[return-value]


def log_level_name() -> str:
    return _raw_env("OLBRIDGE_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()  # type: ignore[union-attr]


@dataclass(frozen=True)
class CatalogSettings:
    """Options for the catalog integration layer.

    Durations are seconds. Defaults match production behaviour: a 10 second
    upstream deadline, a 24 hour cache TTL swept hourly, and a publication
    poll 30 seconds after startup followed by one every 6 hours.
    """

    upstream_base_url: str = DEFAULT_UPSTREAM_BASE_URL
    upstream_timeout: float = 10.0
    upstream_rate_per_sec: float = 5.0
    upstream_burst: int = 15
    cache_ttl: float = 24 * 3600.0
    cache_sweep_interval: float = 3600.0
    poll_interval: float = 6 * 3600.0
    poll_initial_delay: float = 30.0
    stats_worker_cap: int = 4
    fanout_chunk_size: int = 200
    shutdown_grace: float = 5.0

    def __post_init__(self) -> None:
        if not self.upstream_base_url:
            raise ValueError("upstream_base_url_required")
        for name in ("upstream_timeout", "cache_ttl", "cache_sweep_interval", "poll_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name}_positive")
        if self.poll_initial_delay < 0 or self.shutdown_grace < 0:
            raise ValueError("delay_non_negative")
        if self.stats_worker_cap < 1 or self.upstream_burst < 1 or self.fanout_chunk_size < 1:
            raise ValueError("capacity_positive")
        if self.upstream_rate_per_sec <= 0:
            raise ValueError("upstream_rate_per_sec_positive")


def _coerce(template: Any, raw: Any) -> Any:
    if isinstance(template, bool):
        if isinstance(raw, str):
            return raw.strip().lower() in _TRUE
        return bool(raw)
    if isinstance(template, int):
        return int(raw)
    if isinstance(template, float):
        return float(raw)
    return str(raw).strip()


def settings_from_mapping(values: Mapping[str, Any], prefix: str = SETTINGS_PREFIX) -> CatalogSettings:
    """Build settings from a host mapping such as Flask's ``app.config``.

    Keys are the option names upper-cased with ``prefix``; missing keys
    keep their defaults, unknown keys are ignored.
    """
    defaults = CatalogSettings()
    changes: dict[str, Any] = {}
    for f in fields(CatalogSettings):
        key = f"{prefix}{f.name.upper()}"
        if key not in values or values[key] is None:
            continue
        try:
            changes[f.name] = _coerce(getattr(defaults, f.name), values[key])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid value for {key}: {values[key]!r}") from exc
    return replace(defaults, **changes)


def summarize_runtime_config(settings: CatalogSettings | None = None) -> dict:
    summary = {
        "db_path": get_db_path(),
        "log_level": log_level_name(),
    }
    if settings is not None:
        summary.update({f.name: getattr(settings, f.name) for f in fields(CatalogSettings)})
    return summary


__all__ = [
    "APP_NAME",
    "APP_VERSION",
    "COVERS_BASE_URL",
    "CatalogSettings",
    "env_bool",
    "get_db_path",
    "log_level_name",
    "settings_from_mapping",
    "summarize_runtime_config",
]
