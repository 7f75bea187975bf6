# kb_assistant/core/session.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Generation session (one turn)
----------------------------------------------------
GenerationSession drives a single user turn end to end:

    IDLE -> REQUESTING -> STREAMING_TEXT | INVOKING_TOOL -> FINALIZING -> SETTLED
                       \\-> FAILED

1) Append the user message to the conversation store.
2) Map the snapshot to wire messages and open one model stream.
3) Text events go into a StreamableText channel; tool events go to the
   ToolInvoker. Whichever kind arrives first decides the turn's render.
4) Commit the final message sequence in one step, then hand the settled
   conversation to the persistence bridge.

On any failure nothing is committed: the store is rolled back to its
pre-turn state and TurnFailedError is raised with the original cause.

The session never locks. Callers hold
ConversationRegistry.turn_lock(chat_id) around run().
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from kb_assistant.core.config import settings
from kb_assistant.core.persistence import PersistenceBridge
from kb_assistant.core.prompts import system_prompt
from kb_assistant.core.streaming import StreamableText
from kb_assistant.core.tool_invoker import ToolInvocation, ToolInvoker
from kb_assistant.core.types import (
    ModelBackend,
    ModelRequest,
    TextDelta,
    ToolDirective,
    WireMessage,
)
from kb_assistant.models.chat_message import (
    Message,
    ToolCallPart,
    ToolResultPart,
    assistant_message,
    new_id,
    user_message,
)
from kb_assistant.runtime_state.conversation import ConversationStore
from kb_assistant.utils import Stopwatch

logger = logging.getLogger(__name__)

Display = Union[StreamableText, ToolInvocation, None]


class TurnFailedError(RuntimeError):
    """A turn could not be settled; `__cause__` holds the underlying error."""


class TurnState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING_TEXT = "streaming_text"
    INVOKING_TOOL = "invoking_tool"
    FINALIZING = "finalizing"
    SETTLED = "settled"
    FAILED = "failed"


@dataclass
class TurnResult:
    """
    What a settled turn hands back to the caller.

    Attributes
    ----------
    id:
        Fresh id for this render.
    display:
        StreamableText for a text turn, the (last) ToolInvocation for a
        tool turn, or None if the model produced nothing.
    """
    id: str
    display: Display


# ---------------------------------------------------------------------------
# History -> wire messages
# ---------------------------------------------------------------------------


def _dump_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False)


def to_wire_messages(messages: Sequence[Message]) -> List[WireMessage]:
    """
    Map history to OpenAI-style chat messages.

    - text content -> {"role", "content", "name"?}
    - tool-call parts -> one assistant message with `tool_calls`
    - tool-result parts -> one "tool" message per result
    """
    wire: List[WireMessage] = []
    for message in messages:
        if message.text is not None:
            entry: Dict[str, Any] = {"role": message.role.value, "content": message.text}
            if message.name:
                entry["name"] = message.name
            wire.append(entry)
            continue

        calls = [p for p in message.parts if isinstance(p, ToolCallPart)]
        if calls:
            wire.append(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": call.tool_call_id,
                            "type": "function",
                            "function": {
                                "name": call.tool_name,
                                "arguments": json.dumps(call.args, ensure_ascii=False),
                            },
                        }
                        for call in calls
                    ],
                }
            )

        for part in message.parts:
            if isinstance(part, ToolResultPart):
                wire.append(
                    {
                        "role": "tool",
                        "tool_call_id": part.tool_call_id,
                        "content": _dump_result(part.result),
                    }
                )
    return wire


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class GenerationSession:
    """
    Runs exactly one turn against an explicit conversation store.

    Parameters
    ----------
    store:
        Conversation the turn belongs to.
    backend:
        Streaming model backend (real or fake).
    invoker:
        Tool invoker; its registry is advertised to the model.
    system:
        System prompt; defaults to prompts/system_prompt.txt.
    model, temperature:
        Model parameters; default to settings.
    persistence:
        Optional bridge called after the commit.
    """

    def __init__(
        self,
        store: ConversationStore,
        backend: ModelBackend,
        invoker: ToolInvoker,
        *,
        system: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        persistence: Optional[PersistenceBridge] = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.invoker = invoker
        self.system = system if system is not None else system_prompt()
        self.model = model or settings.model_name
        self.temperature = temperature if temperature is not None else settings.model_temperature
        self.persistence = persistence

        self.state = TurnState.IDLE
        self.channel: Optional[StreamableText] = None
        self.invocations: List[ToolInvocation] = []
        self._display_ready: Optional[asyncio.Future] = None

    @property
    def display_ready(self) -> asyncio.Future:
        """Resolves with the render handle as soon as it exists (None if none)."""
        if self._display_ready is None:
            self._display_ready = asyncio.get_running_loop().create_future()
        return self._display_ready

    def _publish(self, display: Display) -> None:
        if not self.display_ready.done():
            self.display_ready.set_result(display)

    def _set_state(self, state: TurnState) -> None:
        logger.debug("[GenerationSession] %s: %s -> %s", self.store.chat_id, self.state.value, state.value)
        self.state = state

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, user_text: str) -> TurnResult:
        """
        Run the turn for `user_text`.

        Raises
        ------
        RuntimeError
            If this session already ran.
        TurnFailedError
            If the backend or a fail-hard tool failed; nothing was committed.
        """
        if self.state is not TurnState.IDLE:
            raise RuntimeError("a GenerationSession runs exactly one turn")

        self._set_state(TurnState.REQUESTING)
        try:
            self.store.append(user_message(user_text))
            request = ModelRequest(
                model=self.model,
                system=self.system,
                messages=to_wire_messages(self.store.snapshot()),
                tools=self.invoker.registry.to_wire(),
                temperature=self.temperature,
            )
            with Stopwatch(f"turn {self.store.chat_id}", logger, level=logging.INFO):
                display = await self._consume(request)
        except asyncio.CancelledError:
            self._abort(asyncio.CancelledError())
            raise
        except Exception as exc:
            self._abort(exc)
            raise TurnFailedError(f"turn failed for chat {self.store.chat_id}: {exc}") from exc

        self._set_state(TurnState.SETTLED)
        self._publish(display)

        if self.persistence is not None:
            try:
                await self.persistence.on_settled(self.store)
            except Exception:  # noqa: BLE001
                logger.exception("Persistence failed for chat %s", self.store.chat_id)

        return TurnResult(id=new_id(), display=display)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _consume(self, request: ModelRequest) -> Display:
        kind: Optional[str] = None

        async for event in self.backend.stream(request):
            if isinstance(event, TextDelta):
                if kind == "tool":
                    logger.warning("Ignoring text after a tool call in chat %s", self.store.chat_id)
                    continue
                if kind is None:
                    kind = "text"
                    self._set_state(TurnState.STREAMING_TEXT)
                    self.channel = StreamableText()
                    self._publish(self.channel)
                if self.channel.closed:
                    logger.warning("Ignoring text after the final text event in chat %s", self.store.chat_id)
                    continue
                self.channel.update(event.delta)
                if event.done:
                    self.channel.done()

            elif isinstance(event, ToolDirective):
                if kind == "text":
                    logger.warning(
                        "Ignoring tool call %r after text in chat %s", event.name, self.store.chat_id
                    )
                    continue
                if kind is None:
                    kind = "tool"
                    self._set_state(TurnState.INVOKING_TOOL)
                invocation = self.invoker.begin(event.name, event.arguments, event.call_id)
                self.invocations.append(invocation)
                self._publish(invocation)
                await self.invoker.complete(self.store, invocation)

            else:
                logger.warning("Unknown model event %r", event)

        self._set_state(TurnState.FINALIZING)
        final: List[Message] = list(self.store.snapshot())

        if kind == "text":
            if not self.channel.closed:
                logger.info("Stream for chat %s ended without a final event; finalizing.", self.store.chat_id)
                self.channel.done()
            final.append(assistant_message(self.channel.value))
            self.store.commit(final)
            return self.channel

        if kind == "tool":
            self.store.commit(final)
            return self.invocations[-1]

        logger.warning("Model produced no events for chat %s", self.store.chat_id)
        self.store.commit(final)
        return None

    def _abort(self, error: BaseException) -> None:
        self._set_state(TurnState.FAILED)
        if self.channel is not None and not self.channel.closed:
            self.channel.fail(error)
        for invocation in self.invocations:
            if invocation.pending:
                invocation.fail(error)
        self.store.discard_pending()
        self._publish(None)
