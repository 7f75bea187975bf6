# kb_assistant/models/render.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Render projection models
-----------------------------------------------
Read-only view of a conversation for UI clients (GET /chats/{id}/ui).
Always derived from history by ConversationStore.project(); never stored.
"""

from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class UserRender(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    text: str


class AssistantRender(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["assistant"] = "assistant"
    text: str


class RenderItem(BaseModel):
    """One non-system message: `{id, display}`; display None = nothing to draw."""

    model_config = ConfigDict(frozen=True)

    id: str
    display: Optional[Union[UserRender, AssistantRender]] = None


RenderState = List[RenderItem]
