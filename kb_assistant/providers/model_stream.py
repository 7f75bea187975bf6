# kb_assistant/providers/model_stream.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Streaming model provider (OpenAI-compatible)
-------------------------------------------------------------------
This module is the ONLY place that knows how to talk to the chat model.

Responsibilities:
- Build the HTTP request (URL, headers, JSON payload with tools, stream=true).
- Read the server-sent-event stream line by line.
- Re-assemble tool calls whose name/arguments arrive in fragments.
- Turn the stream into TextDelta / ToolDirective events.

It is used by core/session.py through the ModelBackend protocol, so tests
can swap in any async generator.

`requests` is blocking; opening the response and pulling lines both run in
the Starlette threadpool so the event loop never stalls.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import requests
from fastapi.concurrency import iterate_in_threadpool, run_in_threadpool

from kb_assistant.core.config import Settings, settings as default_settings
from kb_assistant.core.types import ModelEvent, ModelRequest, TextDelta, ToolDirective

logger = logging.getLogger(__name__)

_SSE_DONE = "[DONE]"


class ModelBackendError(Exception):
    """Raised when the model backend cannot produce a response."""


def _build_payload(request: ModelRequest) -> Dict[str, Any]:
    """
    Build the JSON body for /chat/completions.

    The system instruction always goes first; history follows in order.
    """
    payload: Dict[str, Any] = {
        "model": request.model,
        "messages": [{"role": "system", "content": request.system}, *request.messages],
        "stream": True,
    }
    if request.tools:
        payload["tools"] = request.tools
        payload["tool_choice"] = "auto"
    if request.temperature is not None:
        payload["temperature"] = request.temperature
    return payload


def parse_sse_line(line: Any) -> Optional[Dict[str, Any]]:
    """
    Decode one SSE line.

    Returns the JSON chunk for `data: {...}` lines, {"done": True} for the
    `data: [DONE]` sentinel and None for blanks, comments and other fields.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    if not line or line.startswith(":"):
        return None
    if not line.startswith("data:"):
        return None

    data = line[len("data:"):].strip()
    if data == _SSE_DONE:
        return {"done": True}
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed SSE data line: %r", data[:200])
        return None
    return chunk if isinstance(chunk, dict) else None


class StreamAssembler:
    """
    Folds streamed chunks into model events.

    Text is forwarded as soon as it arrives. Tool-call fragments are
    accumulated by index and emitted once the choice reports a
    finish_reason (or the stream ends).
    """

    def __init__(self) -> None:
        self.content: str = ""
        self.finished: bool = False
        self._text_seen: bool = False
        self._calls: Dict[int, Dict[str, Any]] = {}

    def feed(self, chunk: Dict[str, Any]) -> List[ModelEvent]:
        if "error" in chunk:
            raise ModelBackendError(f"Model stream error: {chunk['error']}")

        events: List[ModelEvent] = []
        for choice in chunk.get("choices") or []:
            delta = choice.get("delta") or {}

            text = delta.get("content")
            if text:
                self.content += text
                self._text_seen = True
                events.append(TextDelta(delta=text, content=self.content))

            for fragment in delta.get("tool_calls") or []:
                slot = self._calls.setdefault(
                    fragment.get("index", 0),
                    {"id": None, "name": "", "arguments": ""},
                )
                if fragment.get("id"):
                    slot["id"] = fragment["id"]
                function = fragment.get("function") or {}
                if function.get("name"):
                    slot["name"] = function["name"]
                if function.get("arguments"):
                    slot["arguments"] += function["arguments"]

            if choice.get("finish_reason"):
                events.extend(self.finish())
        return events

    def finish(self) -> List[ModelEvent]:
        """Flush pending tool calls and the final text event (once)."""
        if self.finished:
            return []
        self.finished = True

        events: List[ModelEvent] = [
            ToolDirective(
                name=slot["name"],
                arguments=slot["arguments"] or "{}",
                call_id=slot["id"],
            )
            for _, slot in sorted(self._calls.items())
        ]
        if self._text_seen:
            events.append(TextDelta(delta="", content=self.content, done=True))
        return events


class OpenAIStreamBackend:
    """
    ModelBackend over an OpenAI-compatible /chat/completions endpoint.

    Parameters
    ----------
    base_url, api_key, timeout_s:
        Endpoint, bearer key and per-read timeout. Default from settings.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_s: Optional[float] = None,
        app_settings: Settings = default_settings,
    ) -> None:
        self.base_url = base_url or app_settings.model_base_url
        self.api_key = api_key if api_key is not None else app_settings.model_api_key
        self.timeout_s = timeout_s or app_settings.model_timeout_s

    def _open(self, payload: Dict[str, Any]) -> requests.Response:
        if not self.api_key:
            raise ModelBackendError("Model API key is missing (set MODEL_API_KEY).")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        try:
            resp = requests.post(
                self.base_url,
                headers=headers,
                json=payload,
                stream=True,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise ModelBackendError(f"Model HTTP error: {exc}") from exc

        if resp.status_code != 200:
            preview = resp.text[:200].replace("\n", " ")
            resp.close()
            raise ModelBackendError(f"Model HTTP {resp.status_code}: {preview}")

        # SSE responses often omit the charset.
        resp.encoding = resp.encoding or "utf-8"
        return resp

    async def stream(self, request: ModelRequest) -> AsyncIterator[ModelEvent]:
        payload = _build_payload(request)
        logger.debug(
            "Opening model stream: model=%s messages=%d tools=%d",
            request.model,
            len(payload["messages"]),
            len(request.tools),
        )
        resp = await run_in_threadpool(self._open, payload)

        assembler = StreamAssembler()
        try:
            async for line in iterate_in_threadpool(resp.iter_lines(decode_unicode=True)):
                chunk = parse_sse_line(line)
                if chunk is None:
                    continue
                if chunk.get("done"):
                    break
                for event in assembler.feed(chunk):
                    yield event
            for event in assembler.finish():
                yield event
        except requests.RequestException as exc:
            raise ModelBackendError(f"Model stream interrupted: {exc}") from exc
        finally:
            resp.close()
