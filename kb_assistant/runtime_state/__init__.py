"""
Runtime state package for the KB Article Assistant server.

Tracks live conversations so a user can draft an article over many turns
without mixing histories.

Typical usage (see routers/chat.py):

    from kb_assistant.runtime_state import conversation_registry

    store = conversation_registry.get_or_create(chat_id, owner_id=user_id)
    async with conversation_registry.turn_lock(store.chat_id):
        result = await GenerationSession(store, ...).run(text)
"""

from .conversation import (
    ConversationRegistry,
    ConversationStore,
    conversation_registry,
    project_messages,
)

__all__ = [
    "ConversationRegistry",
    "ConversationStore",
    "conversation_registry",
    "project_messages",
]
