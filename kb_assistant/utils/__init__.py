# kb_assistant/utils/__init__.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Utility toolbox
--------------------------------------
Shared helpers used across the server:

- file_io : tolerant JSON reads, atomic JSON writes
- logging : central logging configuration
- timers  : Stopwatch for backend / tool latency

    from kb_assistant.utils import setup_logging, get_logger
"""

from __future__ import annotations

from .file_io import (  # noqa: F401
    read_json_safely,
    read_text_safely,
    write_json_atomic,
)

from .logging import (  # noqa: F401
    setup_logging,
    get_logger,
)

from .timers import Stopwatch  # noqa: F401
