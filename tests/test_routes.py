import pytest
from fastapi.testclient import TestClient

from kb_assistant.core.persistence import FileChatStorage
from kb_assistant.core.types import ToolDirective
from kb_assistant.main import create_app
from kb_assistant.models.chat_message import assistant_message, system_message, user_message
from kb_assistant.models.chat_record import ChatRecord
from kb_assistant.providers.completion import RewriteError
from kb_assistant.providers.model_stream import ModelBackendError
from kb_assistant.routers.deps import get_backend, get_invoker, get_registry, get_storage
from kb_assistant.runtime_state import ConversationRegistry


class Harness:
    def __init__(self, client, backend, registry, storage):
        self.client = client
        self.backend = backend
        self.registry = registry
        self.storage = storage


@pytest.fixture
def harness(tmp_path, make_backend, invoker):
    app = create_app()
    backend = make_backend()
    registry = ConversationRegistry()
    storage = FileChatStorage(tmp_path)

    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_invoker] = lambda: invoker
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_storage] = lambda: storage

    with TestClient(app) as client:
        yield Harness(client, backend, registry, storage)


def _save(storage, chat_id="saved1", user_id="u1"):
    storage.save_chat(
        ChatRecord(
            id=chat_id,
            title="hi",
            user_id=user_id,
            path=f"/chat/{chat_id}",
            messages=[system_message("sys"), user_message("hi"), assistant_message("hello")],
        )
    )


# ---------------------------------------------------------------------------
# meta
# ---------------------------------------------------------------------------


def test_health(harness):
    resp = harness.client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# POST /chat
# ---------------------------------------------------------------------------


def test_chat_text_turn(harness, text_deltas):
    harness.backend.scripts.append(text_deltas("Hello", " there"))

    resp = harness.client.post("/chat", json={"text": "hi"}, headers={"X-User-Id": "u1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["kind"] == "text"
    assert body["text"] == "Hello there"
    chat_id = body["chat_id"]
    assert harness.storage.get_chat(chat_id, "u1").title == "hi"


def test_chat_continues_a_conversation(harness, text_deltas):
    harness.backend.scripts.extend([text_deltas("one"), text_deltas("two")])

    first = harness.client.post("/chat", json={"text": "q1"}).json()
    second = harness.client.post("/chat", json={"text": "q2", "chat_id": first["chat_id"]}).json()

    assert second["chat_id"] == first["chat_id"]
    store = harness.registry.get(first["chat_id"])
    assert [m.text for m in store.committed] == ["q1", "one", "q2", "two"]


def test_chat_search_turn_returns_articles(harness, search_directive):
    harness.backend.scripts.append([search_directive])

    body = harness.client.post("/chat", json={"text": "find call forwarding"}).json()

    assert body["kind"] == "articles"
    assert body["articles"][0]["title"] == "Set up call forwarding"
    assert body["meta"] == {"tool_name": "search", "tool_call_id": "call_1"}


def test_chat_rewrite_turn(harness):
    harness.backend.scripts.append([ToolDirective("rewrite", {"content": "draft"}, "c1")])

    body = harness.client.post("/chat", json={"text": "rewrite this"}).json()

    assert body["kind"] == "rewrite"
    assert body["rewritten"] == "Rewritten in house style."


def test_chat_generation_failure_is_502_and_rolls_back(harness, fake_tools):
    fake_tools.rewrite_error = RewriteError("down")
    harness.backend.scripts.append([ToolDirective("rewrite", {"content": "draft"}, "c1")])

    resp = harness.client.post("/chat", json={"text": "rewrite this", "chat_id": "abc123"})

    assert resp.status_code == 502
    assert len(harness.registry.get("abc123")) == 0


def test_chat_backend_failure_is_502(harness):
    harness.backend.scripts.append([ModelBackendError("no key")])
    resp = harness.client.post("/chat", json={"text": "hi"})
    assert resp.status_code == 502


def test_chat_rejects_empty_text(harness):
    assert harness.client.post("/chat", json={"text": "   "}).status_code == 422
    assert harness.client.post("/chat", json={"text": "\x00"}).status_code == 422


def test_chat_cannot_continue_someone_elses_chat(harness, text_deltas):
    harness.backend.scripts.append(text_deltas("mine"))
    chat_id = harness.client.post("/chat", json={"text": "hi"}, headers={"X-User-Id": "u1"}).json()["chat_id"]

    resp = harness.client.post("/chat", json={"text": "hi", "chat_id": chat_id}, headers={"X-User-Id": "u2"})
    assert resp.status_code == 404


def test_chat_cannot_take_over_someone_elses_saved_chat(harness, text_deltas):
    _save(harness.storage)
    harness.backend.scripts.append(text_deltas("mine now"))

    as_other = harness.client.post("/chat", json={"text": "mine now", "chat_id": "saved1"}, headers={"X-User-Id": "u2"})
    anonymous = harness.client.post("/chat", json={"text": "mine now", "chat_id": "saved1"})

    assert as_other.status_code == 404
    assert anonymous.status_code == 404
    assert "saved1" not in harness.registry
    assert harness.backend.requests == []
    texts = [m.text for m in harness.storage.get_chat("saved1", "u1").messages]
    assert texts == ["sys", "hi", "hello"]


def test_anonymous_chat_is_not_handed_to_a_signed_in_user(harness, text_deltas):
    harness.backend.scripts.append(text_deltas("hello"))
    chat_id = harness.client.post("/chat", json={"text": "hi"}).json()["chat_id"]

    resp = harness.client.post("/chat", json={"text": "hi", "chat_id": chat_id}, headers={"X-User-Id": "u1"})

    assert resp.status_code == 404
    assert harness.registry.get(chat_id).owner_id is None
    assert harness.storage.get_chat(chat_id, "u1") is None


def test_chat_rehydrates_saved_chat(harness, text_deltas):
    _save(harness.storage)
    harness.backend.scripts.append(text_deltas("welcome back"))

    resp = harness.client.post("/chat", json={"text": "again", "chat_id": "saved1"}, headers={"X-User-Id": "u1"})

    assert resp.status_code == 200
    texts = [m.text for m in harness.registry.get("saved1").committed]
    assert texts == ["sys", "hi", "hello", "again", "welcome back"]


# ---------------------------------------------------------------------------
# /chats
# ---------------------------------------------------------------------------


def test_list_and_get_saved_chats(harness):
    _save(harness.storage)
    _save(harness.storage, chat_id="other", user_id="u2")
    headers = {"X-User-Id": "u1"}

    listing = harness.client.get("/chats", headers=headers).json()
    assert [c["id"] for c in listing] == ["saved1"]

    record = harness.client.get("/chats/saved1", headers=headers).json()
    assert record["title"] == "hi"
    assert harness.client.get("/chats/other", headers=headers).status_code == 404


def test_ui_state_projection(harness):
    _save(harness.storage)

    resp = harness.client.get("/chats/saved1/ui", headers={"X-User-Id": "u1"})

    assert resp.status_code == 200
    assert resp.json() == [
        {"id": "saved1-0", "display": {"kind": "user", "text": "hi"}},
        {"id": "saved1-1", "display": {"kind": "assistant", "text": "hello"}},
    ]


def test_ui_state_requires_owner_and_existing_chat(harness):
    _save(harness.storage)
    assert harness.client.get("/chats/saved1/ui").status_code == 401
    assert harness.client.get("/chats/missing/ui", headers={"X-User-Id": "u1"}).status_code == 404


def test_delete_chat(harness):
    _save(harness.storage)
    headers = {"X-User-Id": "u1"}

    assert harness.client.delete("/chats/saved1", headers=headers).json()["deleted"] is True
    assert harness.client.get("/chats/saved1", headers=headers).status_code == 404
    assert harness.client.delete("/chats/saved1", headers=headers).status_code == 404


# ---------------------------------------------------------------------------
# /ws/chat
# ---------------------------------------------------------------------------


def test_ws_text_turn_streams_deltas(harness, text_deltas):
    harness.backend.scripts.append(text_deltas("Hel", "lo"))

    with harness.client.websocket_connect("/ws/chat") as ws:
        ws.send_json({"text": "hi", "user_id": "u1"})
        started = ws.receive_json()
        deltas = [ws.receive_json(), ws.receive_json()]
        settled = ws.receive_json()

    assert started["type"] == "turn_started"
    assert [d["delta"] for d in deltas] == ["Hel", "lo"]
    assert settled["type"] == "turn_settled"
    assert settled["kind"] == "text"
    assert harness.storage.get_chat(started["chat_id"], "u1") is not None


def test_ws_tool_turn_frames(harness, search_directive):
    harness.backend.scripts.append([search_directive])

    with harness.client.websocket_connect("/ws/chat") as ws:
        ws.send_json({"text": "find articles"})
        frames = [ws.receive_json() for _ in range(4)]

    assert [f["type"] for f in frames] == ["turn_started", "tool_pending", "tool_result", "turn_settled"]
    assert frames[1]["tool_name"] == "search"
    assert frames[2]["status"] == "resolved"
    assert frames[2]["result"][0]["id"] == 1
    assert frames[3]["kind"] == "articles"


def test_ws_bad_frames_keep_socket_open(harness, text_deltas):
    harness.backend.scripts.append(text_deltas("ok"))

    with harness.client.websocket_connect("/ws/chat") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["code"] == "invalid_json"

        ws.send_json({"chat_id": "x"})
        assert ws.receive_json()["code"] == "invalid_chat_request"

        ws.send_json({"text": "hi"})
        frames = [ws.receive_json() for _ in range(3)]

    assert [f["type"] for f in frames] == ["turn_started", "text_delta", "turn_settled"]


def test_ws_failed_turn_sends_error(harness):
    harness.backend.scripts.append([ModelBackendError("boom")])

    with harness.client.websocket_connect("/ws/chat") as ws:
        ws.send_json({"text": "hi"})
        assert ws.receive_json()["type"] == "turn_started"
        error = ws.receive_json()

    assert error["type"] == "error"
    assert error["code"] == "generation_failed"
