# kb_assistant/routers/chat.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - /chat router
-----------------------------------
Main HTTP endpoint: one request runs one turn and returns its settled
result.

Flow:
  HTTP POST /chat  (ChatRequest JSON)
    -> sanitize text
    -> open the live conversation (new, live, or rehydrated from storage)
    -> hold the conversation's turn lock
       -> GenerationSession.run()
          - model streams text, or calls `search` / `rewrite`
          - one atomic commit, then persistence for owned chats
    -> ChatTurnResponse JSON
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from kb_assistant.core.safety import sanitize_user_text
from kb_assistant.core.session import GenerationSession, TurnFailedError, TurnResult
from kb_assistant.core.streaming import StreamableText
from kb_assistant.core.tool_invoker import ToolInvocation, ToolInvoker, ToolStatus, to_payload
from kb_assistant.core.persistence import ChatStorage
from kb_assistant.core.types import ModelBackend
from kb_assistant.models.chat_request import ChatRequest, ChatTurnResponse
from kb_assistant.routers.deps import (
    get_backend,
    get_invoker,
    get_owner_id,
    get_registry,
    get_storage,
    make_persistence,
    open_conversation,
)
from kb_assistant.runtime_state import ConversationRegistry

router = APIRouter(tags=["chat"])
logger = logging.getLogger(__name__)


def tool_display_fields(invocation: ToolInvocation) -> Dict[str, Any]:
    """Response fields (kind + payload) for a settled tool invocation."""
    if invocation.status is ToolStatus.REJECTED:
        error = invocation.result.get("error") if isinstance(invocation.result, dict) else None
        return {"kind": "tool_error", "error": error or "tool call rejected"}

    payload = to_payload(invocation.result)
    if invocation.render_kind == "articles":
        return {"kind": "articles", "articles": payload or []}
    if invocation.render_kind == "rewrite":
        return {"kind": "rewrite", "rewritten": payload}
    return {"kind": "text", "text": payload if isinstance(payload, str) else str(payload)}


def to_turn_response(chat_id: str, result: TurnResult) -> ChatTurnResponse:
    """Map a settled TurnResult to the HTTP response body."""
    display = result.display
    meta: Dict[str, Any] = {}

    if isinstance(display, StreamableText):
        fields: Dict[str, Any] = {"kind": "text", "text": display.value}
    elif isinstance(display, ToolInvocation):
        fields = tool_display_fields(display)
        meta = {"tool_name": display.tool_name, "tool_call_id": display.call_id}
    else:
        fields = {"kind": "none"}

    return ChatTurnResponse(chat_id=chat_id, message_id=result.id, meta=meta, **fields)


@router.post(
    "/chat",
    response_model=ChatTurnResponse,
    response_model_exclude_none=True,
)
async def chat_endpoint(
    request: ChatRequest,
    owner_id: Optional[str] = Depends(get_owner_id),
    registry: ConversationRegistry = Depends(get_registry),
    backend: ModelBackend = Depends(get_backend),
    invoker: ToolInvoker = Depends(get_invoker),
    storage: ChatStorage = Depends(get_storage),
) -> ChatTurnResponse:
    """
    Run one assistant turn.

    - 404 if `chat_id` is live or saved under a different owner. Ownership
      is exact, so an anonymous chat stays anonymous.
    - 422 if the text is empty after cleaning.
    - 502 if the model backend or the rewrite tool failed; the
      conversation is left exactly as it was before the request.
    """
    cleaned = sanitize_user_text(request.text)
    if cleaned.too_short:
        raise HTTPException(status_code=422, detail="Message text is empty.")

    store = await open_conversation(registry, storage, request.chat_id, owner_id)
    if store is None:
        raise HTTPException(status_code=404, detail="Chat not found.")

    logger.info(
        "[/chat] chat_id=%s owner=%s text=%r",
        store.chat_id,
        owner_id,
        cleaned.sanitized[:80],
    )

    session = GenerationSession(
        store,
        backend,
        invoker,
        persistence=make_persistence(storage),
    )
    try:
        async with registry.turn_lock(store.chat_id):
            result = await session.run(cleaned.sanitized)
    except TurnFailedError as exc:
        logger.error("[/chat] turn failed for %s: %s", store.chat_id, exc.__cause__ or exc)
        raise HTTPException(
            status_code=502,
            detail=f"Generation failed: {exc.__cause__ or exc}",
        ) from exc

    response = to_turn_response(store.chat_id, result)
    logger.info("[/chat] chat_id=%s kind=%s", store.chat_id, response.kind)
    return response
