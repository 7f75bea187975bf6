# kb_assistant/utils/logging.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - logging utilities
----------------------------------------
One place to configure process-wide logging.

- Same line format for every module (turn controller, tools, providers).
- Level follows settings.debug unless an explicit level is passed.
- HTTP client and uvicorn access logs are kept at WARNING by default.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("uvicorn.access", "urllib3", "httpx", "multipart")


def setup_logging(
    *,
    debug: bool = False,
    level: Optional[int] = None,
) -> None:
    """
    Configure root logging for the process.

    Parameters
    ----------
    debug:
        DEBUG when True, INFO otherwise. Usually wired from settings.debug.
    level:
        Explicit logging level; wins over `debug`.

    Safe to call more than once: when handlers already exist (uvicorn,
    pytest) only the levels are adjusted.
    """
    base_level = level if level is not None else (logging.DEBUG if debug else logging.INFO)

    root = logging.getLogger()
    if root.handlers:
        root.setLevel(base_level)
        for handler in root.handlers:
            handler.setLevel(base_level)
    else:
        logging.basicConfig(level=base_level, format=LOG_FORMAT, datefmt=DATE_FORMAT)

    noisy_level = os.getenv("KB_NOISY_LOG_LEVEL", "WARNING")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """
    Thin wrapper around logging.getLogger.

        from kb_assistant.utils import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)
