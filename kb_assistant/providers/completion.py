# kb_assistant/providers/completion.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Rewrite provider (non-streaming chat completion)
-----------------------------------------------------------------------
Single blocking call used by the `rewrite` tool.

Responsibilities:
- Build the HTTP request (URL, headers, JSON payload).
- Parse choices[0].message.content.
- Raise RewriteError on any failure: a rewrite has no safe fallback text,
  so the turn that asked for it fails.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import requests

from kb_assistant.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class RewriteError(Exception):
    """Raised when the rewrite backend cannot produce text."""


def _build_completion_payload(
    messages: List[Dict[str, str]],
    app_settings: Settings,
) -> Dict[str, Any]:
    return {
        "model": app_settings.rewrite_model,
        "messages": messages,
        "temperature": app_settings.rewrite_temperature,
    }


def call_rewrite_model(
    messages: List[Dict[str, str]],
    app_settings: Settings = default_settings,
) -> str:
    """
    Run one chat completion against the rewrite backend.

    Parameters
    ----------
    messages:
        List of {"role": "system"|"user", "content": "..."} dicts.

    Returns
    -------
    str
        Generated text, stripped.

    Raises
    ------
    RewriteError
        If the backend is misconfigured, unreachable, or returns junk.
    """
    api_key = app_settings.effective_rewrite_key
    if not api_key:
        raise RewriteError("Rewrite API key is missing (set REWRITE_API_KEY or MODEL_API_KEY).")

    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    payload = _build_completion_payload(messages, app_settings)

    try:
        resp = requests.post(
            app_settings.effective_rewrite_url,
            headers=headers,
            json=payload,
            timeout=app_settings.rewrite_timeout_s,
        )
    except requests.RequestException as exc:
        raise RewriteError(f"Rewrite HTTP error: {exc}") from exc

    if resp.status_code != 200:
        text_preview = resp.text[:200].replace("\n", " ")
        raise RewriteError(f"Rewrite HTTP {resp.status_code}: {text_preview}")

    try:
        data = resp.json()
    except ValueError as exc:
        raise RewriteError("Rewrite backend returned non-JSON response.") from exc

    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise RewriteError(
            "Rewrite response JSON missing choices[0].message.content"
        ) from exc

    if not isinstance(content, str) or not content.strip():
        raise RewriteError("Rewrite backend returned empty content.")

    return content.strip()
