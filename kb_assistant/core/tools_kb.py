# kb_assistant/core/tools_kb.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Knowledge-base tools
-------------------------------------------
The two tools the model can call:

- search  : similarity search over existing support articles
- rewrite : restyle user text into the RingCentral house style

Failure policy:
- search is fail-soft. Transport errors, non-2xx statuses and malformed
  bodies are logged and mapped to an empty result list.
- rewrite is fail-hard. There is no safe stand-in for a rewrite, so
  RewriteError propagates and fails the turn.

The HTTP helpers are plain blocking functions (easy to test with a patched
`requests.post`); the async resolvers push them to the threadpool.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import requests
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, ValidationError

from kb_assistant.core.config import Settings, settings as default_settings
from kb_assistant.core.prompts import rewrite_instruction, style_exemplar
from kb_assistant.core.tool_invoker import ToolRegistry, ToolSpec
from kb_assistant.models.article import Article
from kb_assistant.providers.completion import call_rewrite_model

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Argument schemas
# ---------------------------------------------------------------------------


class SearchArgs(BaseModel):
    query: str = Field(
        ...,
        min_length=1,
        description="The query string to search for similar articles.",
    )


class RewriteArgs(BaseModel):
    content: str = Field(
        ...,
        min_length=1,
        description="The exact text to revise into the RingCentral style.",
    )


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------


def search_articles(query: str, app_settings: Settings = default_settings) -> List[Article]:
    """
    POST {"query": query} to the search backend and return the articles.

    Never raises for backend problems: returns [] instead.
    """
    url = app_settings.search_url
    if not url:
        logger.warning("search_articles: SEARCH_URL is not configured; returning no articles.")
        return []

    headers: Dict[str, str] = {"Content-Type": "application/json"}
    if app_settings.search_api_key:
        headers["Authorization"] = f"Bearer {app_settings.search_api_key}"

    try:
        resp = requests.post(
            url,
            headers=headers,
            json={"query": query},
            timeout=app_settings.search_timeout_s,
        )
    except requests.RequestException as exc:
        logger.warning("search_articles: HTTP request failed for %s: %s", url, exc)
        return []

    if not 200 <= resp.status_code < 300:
        preview = resp.text[:200].replace("\n", " ")
        logger.warning("search_articles: HTTP %s from %s: %s", resp.status_code, url, preview)
        return []

    try:
        data: Any = resp.json()
    except ValueError:
        logger.warning("search_articles: non-JSON response from %s", url)
        return []

    if not isinstance(data, list):
        logger.warning("search_articles: expected a JSON array, got %s", type(data).__name__)
        return []

    articles: List[Article] = []
    for item in data:
        try:
            articles.append(Article.model_validate(item))
        except ValidationError as exc:
            logger.warning("search_articles: skipping malformed article %r: %s", item, exc)

    logger.info("search_articles: %d article(s) for %r", len(articles), query)
    return articles


# ---------------------------------------------------------------------------
# rewrite
# ---------------------------------------------------------------------------


def build_rewrite_messages(content: str) -> List[Dict[str, str]]:
    """System message = instruction + style exemplar; user message = text to revise."""
    system = rewrite_instruction()
    exemplar = style_exemplar()
    if exemplar:
        system = f"{system}\n\nExample article:\n\n{exemplar}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": content},
    ]


def rewrite_content(content: str, app_settings: Settings = default_settings) -> str:
    """Return `content` rewritten in house style; raises RewriteError on failure."""
    return call_rewrite_model(build_rewrite_messages(content), app_settings)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def build_kb_registry(app_settings: Settings = default_settings) -> ToolRegistry:
    """Registry with the `search` and `rewrite` tools bound to `app_settings`."""

    async def _search(args: SearchArgs) -> List[Article]:
        return await run_in_threadpool(search_articles, args.query, app_settings)

    async def _rewrite(args: RewriteArgs) -> str:
        return await run_in_threadpool(rewrite_content, args.content, app_settings)

    return ToolRegistry(
        [
            ToolSpec(
                name="search",
                description="Get a list of support articles similar to the query.",
                args_model=SearchArgs,
                resolver=_search,
                render_kind="articles",
            ),
            ToolSpec(
                name="rewrite",
                description=(
                    "Rewrite the given text so it matches the tone and style of "
                    "RingCentral support articles."
                ),
                args_model=RewriteArgs,
                resolver=_rewrite,
                render_kind="rewrite",
            ),
        ]
    )
