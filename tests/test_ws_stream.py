import pytest
from fastapi import WebSocketDisconnect

from kb_assistant.core.session import GenerationSession
from kb_assistant.providers.model_stream import ModelBackendError
from kb_assistant.routers.ws import _stream_turn
from kb_assistant.runtime_state import ConversationRegistry


class RecordingSocket:
    def __init__(self):
        self.frames = []

    async def send_json(self, frame):
        self.frames.append(frame)


class ClosedSocket:
    async def send_json(self, frame):
        raise WebSocketDisconnect(code=1001)


def _session(store, backend, invoker):
    return GenerationSession(store, backend, invoker, system="sys", model="gpt-test")


@pytest.mark.asyncio
async def test_text_deltas_are_forwarded(store, make_backend, invoker, text_deltas):
    socket = RecordingSocket()
    session = _session(store, make_backend(text_deltas("Hel", "lo")), invoker)

    result = await _stream_turn(socket, ConversationRegistry(), store, session, "hi")

    assert result is not None
    assert [f["delta"] for f in socket.frames] == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_failed_text_stream_is_reported_as_an_error_frame(store, make_backend, invoker, text_deltas):
    socket = RecordingSocket()
    script = text_deltas("Hel", done=False) + [ModelBackendError("connection reset")]
    session = _session(store, make_backend(script), invoker)

    result = await _stream_turn(socket, ConversationRegistry(), store, session, "hi")

    assert result is None
    assert [f["type"] for f in socket.frames] == ["text_delta", "error"]
    assert socket.frames[1]["code"] == "generation_failed"
    assert len(store) == 0


@pytest.mark.asyncio
async def test_disconnect_while_streaming_reaches_the_caller(store, make_backend, invoker, text_deltas):
    registry = ConversationRegistry()
    session = _session(store, make_backend(text_deltas("Hel", "lo")), invoker)

    with pytest.raises(WebSocketDisconnect):
        await _stream_turn(ClosedSocket(), registry, store, session, "hi")

    # The turn itself still settles once the lock is free.
    async with registry.turn_lock(store.chat_id):
        pass
    assert [m.text for m in store.committed] == ["hi", "Hello"]
