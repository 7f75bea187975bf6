# kb_assistant/routers/chats.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - /chats router
------------------------------------
Read and delete saved chats. Every route is scoped to the caller's
X-User-Id; other users' chats look exactly like missing ones.

  GET    /chats               -> ChatSummary list, newest first
  GET    /chats/{chat_id}     -> ChatRecord
  GET    /chats/{chat_id}/ui  -> RenderState of the saved history
  DELETE /chats/{chat_id}     -> {"deleted": true}
"""

from __future__ import annotations

import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.concurrency import run_in_threadpool

from kb_assistant.core.persistence import ChatStorage
from kb_assistant.models.chat_record import ChatRecord, ChatSummary
from kb_assistant.models.render import RenderItem
from kb_assistant.routers.deps import get_owner_id, get_registry, get_storage
from kb_assistant.runtime_state import ConversationRegistry, project_messages

router = APIRouter(prefix="/chats", tags=["chats"])
logger = logging.getLogger(__name__)

ChatIdPath = Annotated[str, Path(pattern=r"^[A-Za-z0-9_-]{1,64}$")]


def _require_owner(owner_id: Optional[str]) -> str:
    if owner_id is None:
        raise HTTPException(status_code=401, detail="X-User-Id header required.")
    return owner_id


async def _load_or_404(storage: ChatStorage, chat_id: str, owner_id: str) -> ChatRecord:
    record = await run_in_threadpool(storage.get_chat, chat_id, owner_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Chat not found.")
    return record


@router.get("", response_model=List[ChatSummary])
async def list_chats(
    owner_id: Optional[str] = Depends(get_owner_id),
    storage: ChatStorage = Depends(get_storage),
) -> List[ChatSummary]:
    owner = _require_owner(owner_id)
    return await run_in_threadpool(storage.list_chats, owner)


@router.get("/{chat_id}", response_model=ChatRecord)
async def get_chat(
    chat_id: ChatIdPath,
    owner_id: Optional[str] = Depends(get_owner_id),
    storage: ChatStorage = Depends(get_storage),
) -> ChatRecord:
    owner = _require_owner(owner_id)
    return await _load_or_404(storage, chat_id, owner)


@router.get("/{chat_id}/ui", response_model=List[RenderItem])
async def get_chat_ui_state(
    chat_id: ChatIdPath,
    owner_id: Optional[str] = Depends(get_owner_id),
    storage: ChatStorage = Depends(get_storage),
) -> List[RenderItem]:
    """
    Render projection of a saved chat (system messages dropped; tool
    entries have display null).
    """
    owner = _require_owner(owner_id)
    record = await _load_or_404(storage, chat_id, owner)
    return project_messages(record.id, record.messages)


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: ChatIdPath,
    owner_id: Optional[str] = Depends(get_owner_id),
    storage: ChatStorage = Depends(get_storage),
    registry: ConversationRegistry = Depends(get_registry),
) -> dict:
    owner = _require_owner(owner_id)
    deleted = await run_in_threadpool(storage.delete_chat, chat_id, owner)
    if not deleted:
        raise HTTPException(status_code=404, detail="Chat not found.")
    registry.drop(chat_id)
    logger.info("[/chats] owner=%s deleted chat %s", owner, chat_id)
    return {"deleted": True, "chat_id": chat_id}
