# kb_assistant/utils/file_io.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - file_io utilities
----------------------------------------
JSON helpers for the file-backed chat storage.

- Writes go through a temp file + rename so a crash never leaves a
  half-written chat record behind.
- Reads are tolerant: a missing or corrupt file is logged and mapped to a
  default instead of raising into a request handler.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def read_json_safely(
    path: Path,
    default: Optional[T] = None,
    *,
    log_missing: bool = False,
) -> Optional[T]:
    """
    Parse a JSON file, returning `default` when it is missing or unreadable.

    Missing files are only logged when log_missing=True; parse and OS errors
    are always logged at WARNING.
    """
    if not path.is_file():
        if log_missing:
            logger.info("read_json_safely: file not found: %s", path)
        return default

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("read_json_safely: failed to read %s: %s", path, exc)
        return default

    try:
        return json.loads(text)  # type: ignore[return-value]
    except json.JSONDecodeError as exc:
        logger.warning("read_json_safely: invalid JSON in %s: %s", path, exc)
        return default


def write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    """
    Write `data` as pretty JSON to `path` via `<path>.tmp` and a rename.

    Parent directories are created on demand. OS errors are logged and
    re-raised; the caller decides whether a failed write matters.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("write_json_atomic: failed to create dir %s: %s", path.parent, exc)
        raise

    tmp_path = path.with_suffix(path.suffix + ".tmp")

    try:
        tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(path)
    except OSError as exc:
        logger.error("write_json_atomic: failed to write %s: %s", path, exc)
        raise


def read_text_safely(path: Path, default: Optional[str] = None) -> Optional[str]:
    """Read a UTF-8 text file (prompt files); log and return `default` on failure."""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("read_text_safely: failed to read %s: %s", path, exc)
        return default
