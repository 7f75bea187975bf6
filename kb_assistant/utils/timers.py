# kb_assistant/utils/timers.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - timing utilities
---------------------------------------
Stopwatch for logging how long backend and tool calls take.

    with Stopwatch("search backend", logger):
        ...

logs:  search backend took 0.237 s
"""

from __future__ import annotations

import logging
import time
from contextlib import ContextDecorator
from typing import Optional


class Stopwatch(ContextDecorator):
    """Context manager (and decorator) that logs elapsed wall time on exit."""

    def __init__(
        self,
        label: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG,
    ) -> None:
        self.label = label
        self.logger = logger or logging.getLogger(__name__)
        self.level = level
        self.elapsed: float = 0.0
        self._start: float = 0.0

    def __enter__(self) -> "Stopwatch":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:  # type: ignore[override]
        self.elapsed = time.perf_counter() - self._start
        outcome = "failed after" if exc_type is not None else "took"
        self.logger.log(self.level, "%s %s %.3f s", self.label, outcome, self.elapsed)
