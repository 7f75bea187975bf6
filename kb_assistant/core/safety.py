# kb_assistant/core/safety.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Safety helpers
-------------------------------------
Central place for:
- Cleaning user text before it enters a conversation.
- Deriving a saved chat's title from its first message.

Both functions are pure (no network, no I/O).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from kb_assistant.core.config import settings
from kb_assistant.models.chat_message import Message

logger = logging.getLogger(__name__)


@dataclass
class SanitizedTextResult:
    """
    Result of sanitize_user_text().

    Attributes
    ----------
    original:
        Raw text from the client (None -> "").
    sanitized:
        Text that goes into the conversation.
    truncated:
        True if the text was cut at the size limit.
    too_short:
        True if nothing is left after cleaning.
    """
    original: str
    sanitized: str
    truncated: bool
    too_short: bool


# Control characters except \t, \n and \r: drafts keep their line structure.
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_user_text(raw_text: Optional[str], max_chars: Optional[int] = None) -> SanitizedTextResult:
    """
    Clean user text.

    Steps:
    - None -> "".
    - Remove non-printable control characters (newlines and tabs stay).
    - Trim leading/trailing whitespace.
    - Truncate to `max_chars` (default settings.max_user_chars).
    """
    limit = max_chars if max_chars is not None else settings.max_user_chars
    original = raw_text if isinstance(raw_text, str) else ""

    cleaned = _CONTROL_CHARS_RE.sub("", original).strip()

    truncated = False
    if limit > 0 and len(cleaned) > limit:
        cleaned = cleaned[:limit].rstrip()
        truncated = True
        logger.debug(
            "sanitize_user_text: truncated user text from %d to %d chars",
            len(original),
            len(cleaned),
        )

    return SanitizedTextResult(
        original=original,
        sanitized=cleaned,
        truncated=truncated,
        too_short=not cleaned,
    )


def make_chat_title(messages: Sequence[Message], max_chars: Optional[int] = None) -> str:
    """
    Title of a saved chat: the first message's text, cut to `max_chars`
    (default settings.title_max_chars). Non-text first messages give "".
    """
    limit = max_chars if max_chars is not None else settings.title_max_chars
    if not messages:
        return ""
    first = messages[0].text
    if first is None:
        return ""
    return first[:limit]
