# kb_assistant/routers/ws.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - WebSocket router
---------------------------------------
/ws/chat streams a turn while it is generated.

Client -> server frames (ChatRequest shape):

    {"text": "...", "chat_id": "a1B2c3D", "user_id": "u-42"}

Server -> client frames, per turn:

    {"type": "turn_started",  "chat_id": ...}
    {"type": "text_delta",    "delta": ...}                    (text turns)
    {"type": "tool_pending",  "tool_name": ..., "call_id": ...} (tool turns)
    {"type": "tool_result",   "tool_name": ..., "call_id": ..., "status": ..., "result": ...}
    {"type": "turn_settled",  "chat_id": ..., "message_id": ..., "kind": ...}

or a single {"type": "error", "code": ..., "message": ...}. Bad frames and
failed turns never close the socket; the client can send the next frame.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from kb_assistant.core.persistence import ChatStorage
from kb_assistant.core.safety import sanitize_user_text
from kb_assistant.core.session import GenerationSession, TurnFailedError, TurnResult
from kb_assistant.core.streaming import StreamableText
from kb_assistant.core.tool_invoker import ToolInvocation, ToolInvoker, to_payload
from kb_assistant.core.types import ModelBackend
from kb_assistant.models.chat_request import ChatRequest
from kb_assistant.routers.chat import to_turn_response
from kb_assistant.routers.deps import (
    get_backend,
    get_invoker,
    get_registry,
    get_storage,
    make_persistence,
    open_conversation,
)
from kb_assistant.runtime_state import ConversationRegistry, ConversationStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _send_error(
    websocket: WebSocket,
    code: str,
    message: str,
    details: Any | None = None,
) -> None:
    """Send a structured error frame to the client."""
    payload: Dict[str, Any] = {
        "type": "error",
        "code": code,
        "message": message,
    }
    if details is not None:
        payload["details"] = details
    await websocket.send_json(payload)


def _tool_frame(frame_type: str, invocation: ToolInvocation) -> Dict[str, Any]:
    frame: Dict[str, Any] = {
        "type": frame_type,
        "tool_name": invocation.tool_name,
        "call_id": invocation.call_id,
    }
    if frame_type == "tool_result":
        frame["status"] = invocation.status.value
        frame["result"] = to_payload(invocation.result)
    return frame


async def _stream_turn(
    websocket: WebSocket,
    registry: ConversationRegistry,
    store: ConversationStore,
    session: GenerationSession,
    text: str,
) -> Optional[TurnResult]:
    """Run the turn in a task and forward its render as frames."""

    async def _locked_run() -> TurnResult:
        async with registry.turn_lock(store.chat_id):
            return await session.run(text)

    display_ready = session.display_ready
    task = asyncio.create_task(_locked_run())

    await asyncio.wait({display_ready, task}, return_when=asyncio.FIRST_COMPLETED)
    if display_ready.done():
        display = display_ready.result()
        if isinstance(display, StreamableText):
            try:
                async for delta in display.updates():
                    await websocket.send_json({"type": "text_delta", "delta": delta})
            except Exception as exc:
                # Only the turn's own failure is reported by the task below.
                if exc is not display.error:
                    raise
                logger.debug("Text stream for %s ended with an error", store.chat_id)
        elif isinstance(display, ToolInvocation):
            await websocket.send_json(_tool_frame("tool_pending", display))

    try:
        result = await task
    except TurnFailedError as exc:
        cause = exc.__cause__ or exc
        logger.error("WS /ws/chat turn failed for %s: %s", store.chat_id, cause)
        await _send_error(websocket, code="generation_failed", message=f"Generation failed: {cause}")
        return None

    for invocation in session.invocations:
        await websocket.send_json(_tool_frame("tool_result", invocation))
    return result


# ---------------------------------------------------------------------------
# /ws/chat
# ---------------------------------------------------------------------------


@router.websocket("/ws/chat")
async def websocket_chat(
    websocket: WebSocket,
    registry: ConversationRegistry = Depends(get_registry),
    backend: ModelBackend = Depends(get_backend),
    invoker: ToolInvoker = Depends(get_invoker),
    storage: ChatStorage = Depends(get_storage),
) -> None:
    """
    Streaming chat endpoint.

    One frame in -> one turn. Turns on the same chat are serialized through
    the conversation's turn lock, also across connections.
    """
    await websocket.accept()
    logger.info("WebSocket /ws/chat connected")

    try:
        while True:
            text = await websocket.receive_text()
            logger.debug("WS /ws/chat received: %r", text)

            try:
                raw = json.loads(text)
            except ValueError:
                await _send_error(websocket, code="invalid_json", message="Frame is not valid JSON.")
                continue

            try:
                chat_req = ChatRequest.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Invalid ChatRequest over WS: %s", exc)
                await _send_error(
                    websocket,
                    code="invalid_chat_request",
                    message="Payload does not match ChatRequest schema.",
                    details=exc.errors(include_url=False, include_context=False),
                )
                continue

            cleaned = sanitize_user_text(chat_req.text)
            if cleaned.too_short:
                await _send_error(websocket, code="empty_text", message="Message text is empty.")
                continue

            store = await open_conversation(registry, storage, chat_req.chat_id, chat_req.user_id)
            if store is None:
                await _send_error(websocket, code="chat_not_found", message="Chat not found.")
                continue

            await websocket.send_json({"type": "turn_started", "chat_id": store.chat_id})
            session = GenerationSession(
                store,
                backend,
                invoker,
                persistence=make_persistence(storage),
            )
            result = await _stream_turn(websocket, registry, store, session, cleaned.sanitized)
            if result is None:
                continue

            response = to_turn_response(store.chat_id, result)
            await websocket.send_json(
                {
                    "type": "turn_settled",
                    "chat_id": store.chat_id,
                    "message_id": result.id,
                    "kind": response.kind,
                }
            )

    except WebSocketDisconnect:
        logger.info("WebSocket /ws/chat disconnected")
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected error in WS /ws/chat: %s", exc)
        try:
            await websocket.close(code=1011)
        except Exception:  # noqa: BLE001
            logger.debug("Failed to close WebSocket after error", exc_info=True)
