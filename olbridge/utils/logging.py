"""Logging helpers.

All loggers live under one ``olbridge`` parent. Only the parent owns a
stream handler and it does not propagate, so a host's root logging setup
never prints our records twice. Children (``olbridge.mirror``,
``olbridge.publication_poller`` ...) carry no level of their own and follow
the parent, which starts at ``OLBRIDGE_LOG_LEVEL`` and can be changed by
the host through ``set_level``.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional, Union

from olbridge import config as app_config

ROOT_NAME = "olbridge"
_FORMAT = "[olbridge] %(asctime)s %(levelname)s %(name)s %(message)s"
_LOCK = threading.Lock()
_ROOT: Optional[logging.Logger] = None


def _resolve_level(level: Union[str, int, None]) -> int:
    if isinstance(level, int):
        return level
    name = (level or app_config.log_level_name()).upper()
    return getattr(logging, name, logging.INFO)


def _root() -> logging.Logger:
    global _ROOT
    if _ROOT is not None:
        return _ROOT
    with _LOCK:
        if _ROOT is None:
            logger = logging.getLogger(ROOT_NAME)
            logger.setLevel(_resolve_level(None))
            if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
                handler = logging.StreamHandler()
                handler.setFormatter(logging.Formatter(_FORMAT))
                logger.addHandler(handler)
            logger.propagate = False
            _ROOT = logger
    return _ROOT


def get_logger(name: str = ROOT_NAME) -> logging.Logger:
    root = _root()
    if name == ROOT_NAME:
        return root
    if not name.startswith(ROOT_NAME + "."):
        name = f"{ROOT_NAME}.{name}"
    return logging.getLogger(name)


def set_level(level: Union[str, int, None] = None) -> int:
    """Set the level for every olbridge logger; ``None`` re-reads the environment."""
    resolved = _resolve_level(level)
    _root().setLevel(resolved)
    return resolved


__all__ = ["get_logger", "set_level", "ROOT_NAME"]
