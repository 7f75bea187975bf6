# kb_assistant/models/article.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Article model
------------------------------------
One support article as returned by the similarity-search backend.
"""

from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict, Field


class Article(BaseModel):
    """A knowledge-base article hit: id, title and body text."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Union[int, str] = Field(..., description="Backend identifier of the article.")
    title: str = Field(default="", description="Article title.")
    content: str = Field(default="", description="Article body (plain text or markdown).")
