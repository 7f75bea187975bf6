# kb_assistant/runtime_state/conversation.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Conversation state
-----------------------------------------

In-memory conversation state for the assistant server.

Purpose
~~~~~~~
- Hold the authoritative, ordered message history of each conversation.
- Let a turn append optimistically (user message, tool call/result pairs)
  and then settle the turn with one atomic commit.
- Derive the render projection that UI clients draw.

Design notes
~~~~~~~~~~~~
- Every operation takes an explicit ConversationStore handle; there is no
  ambient "current conversation".
- Single writer per conversation. The core never locks; callers serialize
  turns through ConversationRegistry.turn_lock(chat_id).
- Readers get tuple snapshots, so a render can run between two appends
  without seeing a half-updated list.
- Durable storage is not handled here (see core.persistence).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from kb_assistant.models.chat_message import Message, Role, new_id, pending_tool_calls
from kb_assistant.models.chat_record import ChatRecord
from kb_assistant.models.render import AssistantRender, RenderItem, RenderState, UserRender
from kb_assistant.utils import get_logger


logger = get_logger("kb_assistant.runtime_state")


# ---------------------------------------------------------------------------
# Render projection
# ---------------------------------------------------------------------------


def _render_message(message: Message):
    if message.role is Role.USER and message.text is not None:
        return UserRender(text=message.text)
    if message.role is Role.ASSISTANT and message.text is not None:
        return AssistantRender(text=message.text)
    # Tool-call / tool-result entries have no standalone rendering.
    return None


def project_messages(chat_id: str, messages: Iterable[Message]) -> RenderState:
    """
    Pure projection of history to RenderState.

    System messages are dropped; ids are "{chat_id}-{index}" where index
    counts the surviving messages in order.
    """
    visible = [m for m in messages if m.role is not Role.SYSTEM]
    return [
        RenderItem(id=f"{chat_id}-{index}", display=_render_message(message))
        for index, message in enumerate(visible)
    ]


# ---------------------------------------------------------------------------
# Per-conversation store
# ---------------------------------------------------------------------------


class ConversationStore:
    """
    Mutable history of one conversation.

    Parameters
    ----------
    chat_id:
        Conversation id; a fresh one is generated when omitted.
    owner_id:
        Authenticated owner, if any. Persistence is skipped without one.
    messages:
        Initial (already settled) history, e.g. from a saved chat.
    """

    def __init__(
        self,
        chat_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        messages: Sequence[Message] = (),
    ) -> None:
        self.chat_id: str = chat_id or new_id()
        self.owner_id: Optional[str] = owner_id
        self.created_at: datetime = datetime.now(timezone.utc)

        self._messages: List[Message] = list(messages)
        self._committed: Tuple[Message, ...] = tuple(messages)
        self.settled: bool = True

    def __len__(self) -> int:
        return len(self._messages)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append(self, message: Message) -> None:
        """Add `message` at the tail. The conversation becomes unsettled."""
        if not isinstance(message, Message):
            raise TypeError(f"expected Message, got {type(message).__name__}")
        self._messages.append(message)
        self.settled = False

    def snapshot(self) -> Tuple[Message, ...]:
        """Current ordered history as an immutable tuple."""
        return tuple(self._messages)

    @property
    def committed(self) -> Tuple[Message, ...]:
        """History as of the last commit."""
        return self._committed

    def commit(self, final_messages: Iterable[Message]) -> None:
        """
        Replace the history with `final_messages` and mark the turn settled.

        Re-committing the same content is a no-op. Raises ValueError if a
        tool result in `final_messages` has no preceding tool call.
        """
        final = tuple(final_messages)
        if self.settled and final == self._committed:
            logger.debug("[ConversationStore] %s: duplicate commit ignored", self.chat_id)
            return

        pending_tool_calls(final)

        self._messages = list(final)
        self._committed = final
        self.settled = True
        logger.debug(
            "[ConversationStore] %s: committed %d messages", self.chat_id, len(final)
        )

    def discard_pending(self) -> int:
        """
        Drop everything appended since the last commit.

        Returns the number of discarded messages.
        """
        dropped = len(self._messages) - len(self._committed)
        self._messages = list(self._committed)
        self.settled = True
        if dropped:
            logger.info(
                "[ConversationStore] %s: discarded %d uncommitted messages",
                self.chat_id,
                dropped,
            )
        return dropped

    def project(self) -> RenderState:
        """RenderState of the current snapshot (see project_messages)."""
        return project_messages(self.chat_id, self.snapshot())


# ---------------------------------------------------------------------------
# Registry of live conversations
# ---------------------------------------------------------------------------


class ConversationRegistry:
    """
    Process-local map of chat_id -> ConversationStore, plus one turn lock
    per conversation.

    Assumes a single worker process. Saved chats can be rehydrated with
    `load()`.
    """

    def __init__(self) -> None:
        self._stores: Dict[str, ConversationStore] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __contains__(self, chat_id: str) -> bool:
        return chat_id in self._stores

    def get(self, chat_id: str) -> Optional[ConversationStore]:
        return self._stores.get(chat_id)

    def get_or_create(
        self,
        chat_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> ConversationStore:
        """
        Return the live store for `chat_id`, creating an empty one if needed.

        `owner_id` only applies to a new store; an existing store keeps the
        owner it was created with.
        """
        if chat_id is not None and chat_id in self._stores:
            return self._stores[chat_id]

        store = ConversationStore(chat_id=chat_id, owner_id=owner_id)
        logger.info("[ConversationRegistry] Creating conversation %s", store.chat_id)
        self._stores[store.chat_id] = store
        return store

    def load(self, record: ChatRecord) -> ConversationStore:
        """
        Rehydrate a saved chat as a settled live conversation.

        A chat that is already live wins over the saved copy.
        """
        live = self._stores.get(record.id)
        if live is not None:
            return live
        store = ConversationStore(
            chat_id=record.id,
            owner_id=record.user_id,
            messages=record.messages,
        )
        store.created_at = record.created_at
        self._stores[store.chat_id] = store
        logger.info(
            "[ConversationRegistry] Loaded conversation %s (%d messages)",
            record.id,
            len(record.messages),
        )
        return store

    def drop(self, chat_id: str) -> None:
        self._stores.pop(chat_id, None)
        self._locks.pop(chat_id, None)

    def turn_lock(self, chat_id: str) -> asyncio.Lock:
        """Lock that callers hold for the whole of a turn on `chat_id`."""
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock


# Global instance used by the routers
conversation_registry = ConversationRegistry()
