# kb_assistant/models/chat_record.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - ChatRecord model
---------------------------------------
Durable form of a settled conversation, written by the persistence bridge
and read back by the /chats routes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, Field

from kb_assistant.models.chat_message import Message


class ChatRecord(BaseModel):
    """
    Saved chat.

    Attributes
    ----------
    id:
        Conversation id (same as the in-memory chat_id).
    title:
        First message text, truncated to settings.title_max_chars.
    user_id:
        Owner of the chat; only the owner can read it back.
    created_at:
        When this record was produced (UTC).
    path:
        Client-side route of the chat, "/chat/{id}".
    messages:
        Full settled history, in order.
    """

    id: str
    title: str
    user_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    path: str
    messages: List[Message] = Field(default_factory=list)


class ChatSummary(BaseModel):
    """Listing entry for GET /chats."""

    id: str
    title: str
    created_at: datetime
    path: str
    message_count: int
