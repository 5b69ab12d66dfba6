"""Flask host wiring.

``init_app`` initialises the record store, builds a ``CatalogRuntime`` from
the host's ``OLBRIDGE_*`` config keys and stores it in
``app.extensions["olbridge"]``. Background workers start unless
``OLBRIDGE_START_WORKERS`` (config key, else environment) is false.
"""
from __future__ import annotations

import atexit
from typing import Any, Optional

from flask import current_app

from olbridge import config as app_config
from olbridge.db import init_engine_once
from olbridge.startup.runtime import CatalogRuntime
from olbridge.utils.logging import get_logger, set_level

LOG = get_logger("olbridge.startup")

EXTENSION_KEY = "olbridge"


def init_app(app: Any, *, http_session: Optional[Any] = None) -> CatalogRuntime:
    LOG.debug("init_app starting")
    if app.config.get("OLBRIDGE_LOG_LEVEL"):
        set_level(app.config["OLBRIDGE_LOG_LEVEL"])
    init_engine_once()
    LOG.debug("DB engine initialized")
    settings = app_config.settings_from_mapping(app.config)
    runtime = CatalogRuntime(settings, http_session=http_session)
    app.extensions[EXTENSION_KEY] = runtime
    start = app.config.get("OLBRIDGE_START_WORKERS", app_config.env_bool("OLBRIDGE_START_WORKERS", True))
    if isinstance(start, str):
        start = start.strip().lower() in ("1", "true", "yes", "on")
    if start:
        runtime.start()
        atexit.register(runtime.shutdown)
    LOG.info("catalog integration wired: %s", app_config.summarize_runtime_config(settings))
    return runtime


def get_runtime(app: Optional[Any] = None) -> CatalogRuntime:
    target = app if app is not None else current_app
    runtime = target.extensions.get(EXTENSION_KEY)
    if runtime is None:
        raise RuntimeError("olbridge is not initialised on this app; call init_app first")
    return runtime


__all__ = ["init_app", "get_runtime", "EXTENSION_KEY"]
