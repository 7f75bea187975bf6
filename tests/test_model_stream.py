import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from kb_assistant.core.types import ModelRequest, TextDelta, ToolDirective
from kb_assistant.providers.model_stream import (
    ModelBackendError,
    OpenAIStreamBackend,
    StreamAssembler,
    _build_payload,
    parse_sse_line,
)


def _sse(chunk) -> str:
    return f"data: {json.dumps(chunk)}"


def _text_chunk(text, finish=None):
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": finish}]}


def _request() -> ModelRequest:
    return ModelRequest(
        model="gpt-test",
        system="You write support articles.",
        messages=[{"role": "user", "content": "hi"}],
        tools=[{"type": "function", "function": {"name": "search", "parameters": {}}}],
        temperature=0.3,
    )


def test_parse_sse_line():
    assert parse_sse_line("") is None
    assert parse_sse_line(": keep-alive") is None
    assert parse_sse_line("event: message") is None
    assert parse_sse_line("data: [DONE]") == {"done": True}
    assert parse_sse_line(b'data: {"a": 1}') == {"a": 1}
    assert parse_sse_line("data: {broken") is None


def test_payload_puts_system_first_and_advertises_tools():
    payload = _build_payload(_request())
    assert payload["messages"][0] == {"role": "system", "content": "You write support articles."}
    assert payload["messages"][1] == {"role": "user", "content": "hi"}
    assert payload["stream"] is True
    assert payload["tool_choice"] == "auto"
    assert payload["temperature"] == 0.3


def test_assembler_emits_text_then_final_event():
    assembler = StreamAssembler()
    events = assembler.feed(_text_chunk("Hel"))
    events += assembler.feed(_text_chunk("lo", finish="stop"))

    assert [type(e) for e in events] == [TextDelta, TextDelta, TextDelta]
    assert [e.delta for e in events] == ["Hel", "lo", ""]
    assert events[-1].done and events[-1].content == "Hello"
    assert assembler.finish() == []


def test_assembler_joins_tool_call_fragments():
    assembler = StreamAssembler()
    chunks = [
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "call_9", "function": {"name": "search", "arguments": ""}}
        ]}}]},
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "function": {"arguments": '{"query": '}}
        ]}}]},
        {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "function": {"arguments": '"fax"}'}}
        ]}}]},
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
    ]
    events = []
    for chunk in chunks:
        events += assembler.feed(chunk)

    assert events == [ToolDirective(name="search", arguments='{"query": "fax"}', call_id="call_9")]


def test_assembler_raises_on_error_chunk():
    with pytest.raises(ModelBackendError):
        StreamAssembler().feed({"error": {"message": "rate limited"}})


def _stream_response(lines, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.encoding = None
    resp.text = "error body"
    resp.iter_lines.return_value = iter(lines)
    return resp


async def _collect(backend):
    return [event async for event in backend.stream(_request())]


@pytest.mark.asyncio
async def test_backend_streams_events():
    lines = [
        _sse(_text_chunk("Hi ")),
        "",
        _sse(_text_chunk("there", finish="stop")),
        "data: [DONE]",
    ]
    resp = _stream_response(lines)
    backend = OpenAIStreamBackend(base_url="http://model.test", api_key="k")

    with patch("kb_assistant.providers.model_stream.requests.post", return_value=resp) as post:
        events = await _collect(backend)

    assert [e.delta for e in events] == ["Hi ", "there", ""]
    assert events[-1].done
    assert post.call_args.kwargs["stream"] is True
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer k"
    resp.close.assert_called()


@pytest.mark.asyncio
async def test_backend_finishes_when_stream_ends_without_done():
    resp = _stream_response([_sse(_text_chunk("partial"))])
    backend = OpenAIStreamBackend(base_url="http://model.test", api_key="k")

    with patch("kb_assistant.providers.model_stream.requests.post", return_value=resp):
        events = await _collect(backend)

    assert events[-1] == TextDelta(delta="", content="partial", done=True)


@pytest.mark.asyncio
async def test_backend_http_error_status():
    backend = OpenAIStreamBackend(base_url="http://model.test", api_key="k")
    with patch(
        "kb_assistant.providers.model_stream.requests.post",
        return_value=_stream_response([], status_code=401),
    ):
        with pytest.raises(ModelBackendError, match="401"):
            await _collect(backend)


@pytest.mark.asyncio
async def test_backend_transport_error():
    backend = OpenAIStreamBackend(base_url="http://model.test", api_key="k")
    with patch(
        "kb_assistant.providers.model_stream.requests.post",
        side_effect=requests.ConnectionError("refused"),
    ):
        with pytest.raises(ModelBackendError):
            await _collect(backend)


@pytest.mark.asyncio
async def test_backend_requires_api_key():
    backend = OpenAIStreamBackend(base_url="http://model.test", api_key="")
    with patch("kb_assistant.providers.model_stream.requests.post") as post:
        with pytest.raises(ModelBackendError):
            await _collect(backend)
    post.assert_not_called()
