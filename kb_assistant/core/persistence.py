# kb_assistant/core/persistence.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Chat persistence
---------------------------------------
Turns a settled conversation into a durable ChatRecord.

- PersistenceBridge is called by the turn controller after each commit.
  It only writes when the conversation has an owner; anonymous chats are
  skipped silently. A storage failure is logged and never un-settles the
  turn.
- FileChatStorage keeps one JSON file per chat under settings.chats_dir.
  It assumes a single worker process, like the live conversation registry.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from kb_assistant.core.config import settings
from kb_assistant.core.safety import make_chat_title
from kb_assistant.models.chat_message import Message
from kb_assistant.models.chat_record import ChatRecord, ChatSummary
from kb_assistant.runtime_state.conversation import ConversationStore
from kb_assistant.utils import read_json_safely, write_json_atomic

logger = logging.getLogger(__name__)

_CHAT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ChatStorage(Protocol):
    """Where settled chats go. Implementations may block; callers use a threadpool."""

    def save_chat(self, record: ChatRecord) -> None:
        ...

    def get_chat(self, chat_id: str, user_id: str) -> Optional[ChatRecord]:
        ...

    def owner_of(self, chat_id: str) -> Optional[str]:
        ...

    def list_chats(self, user_id: str) -> List[ChatSummary]:
        ...

    def delete_chat(self, chat_id: str, user_id: str) -> bool:
        ...


# ---------------------------------------------------------------------------
# File-backed storage
# ---------------------------------------------------------------------------


class FileChatStorage:
    """
    One `<chat_id>.json` file per chat.

    Parameters
    ----------
    root:
        Directory holding the files (created on first write).
    """

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root: Path = Path(root) if root is not None else settings.chats_dir

    def _path(self, chat_id: str) -> Path:
        if not _CHAT_ID_RE.match(chat_id):
            raise ValueError(f"invalid chat id {chat_id!r}")
        return self.root / f"{chat_id}.json"

    def _load(self, path: Path) -> Optional[ChatRecord]:
        raw = read_json_safely(path)
        if raw is None:
            return None
        try:
            return ChatRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning("[FileChatStorage] Ignoring invalid chat file %s: %s", path, exc)
            return None

    def save_chat(self, record: ChatRecord) -> None:
        """Write `record`, refusing to replace a chat saved under another owner."""
        path = self._path(record.id)
        existing = self._load(path)
        if existing is not None and existing.user_id != record.user_id:
            raise PermissionError(f"chat {record.id} belongs to another user")
        write_json_atomic(path, record.model_dump(mode="json"))
        logger.debug("[FileChatStorage] Saved chat %s (%d messages)", record.id, len(record.messages))

    def get_chat(self, chat_id: str, user_id: str) -> Optional[ChatRecord]:
        """The chat, or None if it does not exist or belongs to someone else."""
        if not _CHAT_ID_RE.match(chat_id):
            return None
        record = self._load(self._path(chat_id))
        if record is None or record.user_id != user_id:
            return None
        return record

    def owner_of(self, chat_id: str) -> Optional[str]:
        """Owner of a saved chat, or None if nothing valid is saved under `chat_id`."""
        if not _CHAT_ID_RE.match(chat_id):
            return None
        record = self._load(self._path(chat_id))
        return record.user_id if record is not None else None

    def list_chats(self, user_id: str) -> List[ChatSummary]:
        """Summaries of `user_id`'s chats, newest first."""
        if not self.root.is_dir():
            return []
        summaries: List[ChatSummary] = []
        for path in self.root.glob("*.json"):
            record = self._load(path)
            if record is None or record.user_id != user_id:
                continue
            summaries.append(
                ChatSummary(
                    id=record.id,
                    title=record.title,
                    created_at=record.created_at,
                    path=record.path,
                    message_count=len(record.messages),
                )
            )
        summaries.sort(key=lambda s: s.created_at, reverse=True)
        return summaries

    def delete_chat(self, chat_id: str, user_id: str) -> bool:
        if self.get_chat(chat_id, user_id) is None:
            return False
        self._path(chat_id).unlink(missing_ok=True)
        logger.info("[FileChatStorage] Deleted chat %s", chat_id)
        return True


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


def build_chat_record(
    store: ConversationStore,
    messages: Sequence[Message],
    title_max_chars: Optional[int] = None,
) -> ChatRecord:
    """ChatRecord for `store` with the given settled `messages`. Requires an owner."""
    if store.owner_id is None:
        raise ValueError("cannot build a chat record without an owner")
    return ChatRecord(
        id=store.chat_id,
        title=make_chat_title(messages, title_max_chars),
        user_id=store.owner_id,
        created_at=store.created_at,
        path=f"/chat/{store.chat_id}",
        messages=list(messages),
    )


class PersistenceBridge:
    """Writes settled conversations to a ChatStorage."""

    def __init__(
        self,
        storage: ChatStorage,
        *,
        enabled: bool = True,
        title_max_chars: Optional[int] = None,
    ) -> None:
        self.storage = storage
        self.enabled = enabled
        self.title_max_chars = title_max_chars

    async def on_settled(self, store: ConversationStore) -> Optional[ChatRecord]:
        """
        Persist the committed history of `store`.

        Returns the written record, or None when skipped (disabled, no owner,
        empty history) or when the write failed.
        """
        if not self.enabled:
            return None
        if store.owner_id is None:
            logger.debug("No owner for chat %s; skipping persistence.", store.chat_id)
            return None

        messages = store.committed
        if not messages:
            return None

        record = build_chat_record(store, messages, self.title_max_chars)
        try:
            await run_in_threadpool(self.storage.save_chat, record)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist chat %s", store.chat_id)
            return None
        return record
