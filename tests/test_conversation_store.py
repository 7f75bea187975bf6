import pytest

from kb_assistant.models.chat_message import (
    assistant_message,
    system_message,
    tool_call_message,
    tool_result_message,
    user_message,
)
from kb_assistant.models.chat_record import ChatRecord
from kb_assistant.runtime_state import ConversationRegistry, ConversationStore, project_messages


def test_project_drops_system_messages_and_keeps_order():
    messages = [
        system_message("be nice"),
        user_message("Find articles on voicemail"),
        tool_call_message("search", "c1", {"query": "voicemail"}),
        tool_result_message("search", "c1", []),
        assistant_message("No matches yet."),
    ]

    state = project_messages("abc", messages)

    assert [item.id for item in state] == ["abc-0", "abc-1", "abc-2", "abc-3"]
    assert state[0].display.kind == "user"
    assert state[0].display.text == "Find articles on voicemail"
    assert state[1].display is None
    assert state[2].display is None
    assert state[3].display.kind == "assistant"
    assert state[3].display.text == "No matches yet."


def test_project_empty_history():
    assert ConversationStore(chat_id="x").project() == []


def test_append_marks_unsettled_and_snapshot_is_immutable():
    store = ConversationStore(chat_id="c")
    store.append(user_message("hi"))
    snap = store.snapshot()
    store.append(assistant_message("hello"))

    assert isinstance(snap, tuple)
    assert len(snap) == 1
    assert len(store) == 2
    assert store.settled is False


def test_append_rejects_non_messages():
    store = ConversationStore(chat_id="c")
    with pytest.raises(TypeError):
        store.append({"role": "user", "content": "hi"})


def test_commit_is_idempotent():
    store = ConversationStore(chat_id="c")
    final = [user_message("hi"), assistant_message("hello")]

    store.commit(final)
    store.commit(final)

    assert store.committed == tuple(final)
    assert store.snapshot() == tuple(final)
    assert store.settled


def test_commit_rejects_orphan_tool_result():
    store = ConversationStore(chat_id="c", messages=[user_message("hi")])
    with pytest.raises(ValueError):
        store.commit([user_message("hi"), tool_result_message("search", "nope", [])])

    assert len(store.committed) == 1


def test_discard_pending_restores_committed_history():
    first = user_message("hi")
    store = ConversationStore(chat_id="c", messages=[first])
    store.append(user_message("second"))
    store.append(tool_call_message("rewrite", "c9", {"content": "x"}))

    assert store.discard_pending() == 2
    assert store.snapshot() == (first,)
    assert store.settled


def test_registry_get_or_create_keeps_the_original_owner():
    registry = ConversationRegistry()
    store = registry.get_or_create("c1")
    assert store.owner_id is None

    assert registry.get_or_create("c1", owner_id="u1") is store
    assert store.owner_id is None

    owned = registry.get_or_create("c2", owner_id="u1")
    registry.get_or_create("c2", owner_id="u2")
    assert owned.owner_id == "u1"


def test_registry_generates_ids_for_new_chats():
    registry = ConversationRegistry()
    store = registry.get_or_create()
    assert len(store.chat_id) == 7
    assert store.chat_id in registry


def test_registry_load_and_drop():
    registry = ConversationRegistry()
    record = ChatRecord(
        id="saved1",
        title="hi",
        user_id="u1",
        path="/chat/saved1",
        messages=[user_message("hi"), assistant_message("hello")],
    )

    store = registry.load(record)

    assert registry.get("saved1") is store
    assert store.owner_id == "u1"
    assert store.created_at == record.created_at
    assert [m.text for m in store.committed] == ["hi", "hello"]

    registry.drop("saved1")
    assert registry.get("saved1") is None


def test_registry_load_keeps_a_live_conversation():
    registry = ConversationRegistry()
    record = ChatRecord(id="saved1", title="hi", user_id="u1", path="/chat/saved1",
                        messages=[user_message("hi")])

    live = registry.load(record)
    live.append(assistant_message("draft"))

    assert registry.load(record) is live
    assert registry.get("saved1") is live
    assert [m.text for m in live.snapshot()] == ["hi", "draft"]


def test_turn_lock_is_per_conversation():
    registry = ConversationRegistry()
    assert registry.turn_lock("a") is registry.turn_lock("a")
    assert registry.turn_lock("a") is not registry.turn_lock("b")
