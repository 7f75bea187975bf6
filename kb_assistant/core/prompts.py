# kb_assistant/core/prompts.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Prompt files
-----------------------------------
Loads the fixed texts the assistant sends to its backends:

- system_prompt.txt       : persona + tool usage, sent on every turn
- rewrite_instruction.txt : instruction for the rewrite tool
- style_exemplar.txt      : house-style example article for the rewrite tool

Files are read from settings.prompts_dir once and cached. Missing files
fall back to short built-in texts so a misconfigured deployment still
answers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from kb_assistant.core.config import settings
from kb_assistant.utils import read_text_safely

logger = logging.getLogger(__name__)

_PROMPT_CACHE: Dict[str, str] = {}

_FALLBACKS: Dict[str, str] = {
    "system_prompt.txt": (
        "You are a support article writer for a cloud communications company "
        "called RingCentral. Help the user write support articles in the "
        "RingCentral tone and style. Call `search` to find similar articles "
        "and `rewrite` to restyle a passage."
    ),
    "rewrite_instruction.txt": (
        "Revise the user's text to match the tone and style of the example "
        "article. Return only the revised text."
    ),
    "style_exemplar.txt": "",
}


def read_prompt_file(filename: str, prompts_dir: Optional[Path] = None) -> str:
    """
    Return the content of `filename` from the prompts directory.

    Missing or unreadable files log a warning and return the built-in
    fallback (empty string if there is none).
    """
    directory = prompts_dir or settings.prompts_dir
    key = str(directory / filename)
    if key in _PROMPT_CACHE:
        return _PROMPT_CACHE[key]

    path = directory / filename
    text = read_text_safely(path) if path.is_file() else None
    if text is None or not text.strip():
        logger.warning("Prompt file missing or empty: %s; using fallback.", path)
        text = _FALLBACKS.get(filename, "")

    _PROMPT_CACHE[key] = text.strip()
    return _PROMPT_CACHE[key]


def system_prompt() -> str:
    return read_prompt_file("system_prompt.txt")


def rewrite_instruction() -> str:
    return read_prompt_file("rewrite_instruction.txt")


def style_exemplar() -> str:
    return read_prompt_file("style_exemplar.txt")


def clear_prompt_cache() -> None:
    _PROMPT_CACHE.clear()
