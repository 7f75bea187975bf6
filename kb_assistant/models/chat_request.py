# kb_assistant/models/chat_request.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - ChatRequest / ChatTurnResponse models
------------------------------------------------------------
Payloads of the POST /chat endpoint. The WebSocket route accepts the same
request shape per frame.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, constr

from kb_assistant.models.article import Article


class ChatRequest(BaseModel):
    """
    Body for POST /chat and for each /ws/chat frame.

    Fields
    ------
    text:
        The user's message: a question, a draft article, a request to
        search similar articles or to rewrite a passage.
    chat_id:
        Conversation to continue. Omitted -> a new conversation is started
        and its id is returned in the response.
    user_id:
        Only read on the WebSocket route (HTTP uses the X-User-Id header).
    """

    text: constr(min_length=1, strip_whitespace=True) = Field(
        ...,
        description="User message in plain text.",
        examples=["Find articles similar to 'set up call forwarding'."],
    )
    chat_id: Optional[str] = Field(
        default=None,
        pattern=r"^[A-Za-z0-9_-]{1,64}$",
        description="Existing conversation id; omitted to start a new chat.",
        examples=["a1B2c3D"],
    )
    user_id: Optional[str] = Field(default=None, description="Owner id (WebSocket only).")


DisplayKind = Literal["text", "articles", "rewrite", "tool_error", "none"]


class ChatTurnResponse(BaseModel):
    """
    Settled result of one turn.

    Exactly one of `text`, `articles`, `rewritten`, `error` is set, matching
    `kind`; `kind == "none"` means the model produced no output.
    """

    chat_id: str
    message_id: str
    kind: DisplayKind
    text: Optional[str] = None
    articles: Optional[List[Article]] = None
    rewritten: Optional[str] = None
    error: Optional[str] = None
    meta: dict[str, Any] = Field(default_factory=dict)
