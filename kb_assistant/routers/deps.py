# kb_assistant/routers/deps.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Router dependencies
------------------------------------------
FastAPI dependencies shared by the HTTP and WebSocket routers. Tests swap
any of them through `app.dependency_overrides`.

Process-wide singletons (registry, backend, tool invoker, storage) are
built lazily from settings on first use.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Header
from fastapi.concurrency import run_in_threadpool

from kb_assistant.core.config import settings
from kb_assistant.core.persistence import ChatStorage, FileChatStorage, PersistenceBridge
from kb_assistant.core.tool_invoker import ToolInvoker
from kb_assistant.core.tools_kb import build_kb_registry
from kb_assistant.core.types import ModelBackend
from kb_assistant.providers.model_stream import OpenAIStreamBackend
from kb_assistant.runtime_state import ConversationRegistry, ConversationStore, conversation_registry

logger = logging.getLogger(__name__)


def get_registry() -> ConversationRegistry:
    return conversation_registry


@lru_cache(maxsize=1)
def get_backend() -> ModelBackend:
    return OpenAIStreamBackend(app_settings=settings)


@lru_cache(maxsize=1)
def get_invoker() -> ToolInvoker:
    return ToolInvoker(build_kb_registry(settings))


@lru_cache(maxsize=1)
def get_storage() -> ChatStorage:
    return FileChatStorage(settings.chats_dir)


def get_owner_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """
    Owner of the request, from the X-User-Id header.

    Stand-in for a real auth layer placed in front of the server; a missing
    or blank header means an anonymous caller.
    """
    if x_user_id is None:
        return None
    x_user_id = x_user_id.strip()
    return x_user_id or None


def make_persistence(storage: ChatStorage) -> PersistenceBridge:
    return PersistenceBridge(
        storage,
        enabled=settings.persist_chats,
        title_max_chars=settings.title_max_chars,
    )


def _owned_by(store: ConversationStore, owner_id: Optional[str]) -> Optional[ConversationStore]:
    if store.owner_id != owner_id:
        logger.warning("Owner mismatch for chat %s", store.chat_id)
        return None
    return store


async def open_conversation(
    registry: ConversationRegistry,
    storage: ChatStorage,
    chat_id: Optional[str],
    owner_id: Optional[str],
) -> Optional[ConversationStore]:
    """
    Live store for a turn.

    - chat_id omitted           -> new conversation
    - chat_id live in registry  -> that store, if `owner_id` matches its owner
    - chat_id saved for owner   -> rehydrated from storage
    - chat_id saved for others  -> None
    - otherwise                 -> new conversation under the given id

    Ownership is exact: an anonymous chat stays anonymous and an owned chat
    is never handed to another caller. Anything that answers None is a 404
    for the routes.
    """
    if chat_id is None:
        return registry.get_or_create(None, owner_id)

    store = registry.get(chat_id)
    if store is not None:
        return _owned_by(store, owner_id)

    record = None
    saved_owner = await run_in_threadpool(storage.owner_of, chat_id)
    if saved_owner is not None:
        if saved_owner != owner_id:
            logger.warning("Chat %s is saved for another user", chat_id)
            return None
        record = await run_in_threadpool(storage.get_chat, chat_id, owner_id)

    # Another request may have opened the chat while storage was read.
    store = registry.get(chat_id)
    if store is not None:
        return _owned_by(store, owner_id)
    if record is not None:
        return registry.load(record)
    return registry.get_or_create(chat_id, owner_id)
