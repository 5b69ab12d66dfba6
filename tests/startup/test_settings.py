"""Catalog settings parsing and validation."""
from __future__ import annotations

import pytest

from olbridge import config as app_config
from olbridge.config import CatalogSettings, settings_from_mapping


def test_defaults_match_production_intervals():
    s = CatalogSettings()
    assert s.upstream_timeout == 10.0
    assert s.cache_ttl == 24 * 3600.0
    assert s.cache_sweep_interval == 3600.0
    assert s.poll_interval == 6 * 3600.0
    assert s.poll_initial_delay == 30.0


def test_mapping_overrides_and_ignores_unknown_keys():
    s = settings_from_mapping(
        {
            "OLBRIDGE_UPSTREAM_TIMEOUT": "2.5",
            "OLBRIDGE_FANOUT_CHUNK_SIZE": "50",
            "OLBRIDGE_SOMETHING_ELSE": "x",
            "SECRET_KEY": "unrelated",
            "OLBRIDGE_CACHE_TTL": None,
        }
    )
    assert s.upstream_timeout == 2.5
    assert s.fanout_chunk_size == 50
    assert s.cache_ttl == 24 * 3600.0


@pytest.mark.parametrize(
    "changes",
    [
        {"upstream_timeout": 0},
        {"cache_ttl": -1},
        {"poll_initial_delay": -5},
        {"stats_worker_cap": 0},
        {"upstream_base_url": ""},
    ],
)
def test_invalid_settings_are_rejected(changes):
    with pytest.raises(ValueError):
        CatalogSettings(**changes)


def test_runtime_summary_includes_db_path_and_settings(monkeypatch):
    monkeypatch.setenv("OLBRIDGE_DB_PATH", "catalog.db")
    monkeypatch.setenv("OLBRIDGE_DATA_DIR", "/srv/data")

    summary = app_config.summarize_runtime_config(CatalogSettings())

    assert summary["db_path"] == "/srv/data/catalog.db"
    assert summary["poll_interval"] == 6 * 3600.0


def test_env_bool(monkeypatch):
    monkeypatch.setenv("OLBRIDGE_START_WORKERS", "Off")
    assert app_config.env_bool("OLBRIDGE_START_WORKERS", True) is False
    monkeypatch.delenv("OLBRIDGE_START_WORKERS")
    assert app_config.env_bool("OLBRIDGE_START_WORKERS", True) is True


def test_public_names_all_resolve():
    for name in app_config.__all__:
        assert hasattr(app_config, name), name
    assert not hasattr(app_config, "metadata")
    assert not hasattr(CatalogSettings, "with_overrides")
