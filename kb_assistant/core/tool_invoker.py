# kb_assistant/core/tool_invoker.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Tool invoker
-----------------------------------
Registry and execution of the tools the model may call mid-turn.

Each tool declares:
- a name and a human-readable description (sent to the model),
- a pydantic model for its arguments (its JSON schema is sent too),
- an async resolver that does the actual work.

Invocation contract
~~~~~~~~~~~~~~~~~~~
1. Arguments from the model (JSON text or dict) are validated first. An
   unknown tool or malformed arguments never reach a resolver; the call is
   recorded with an error result and the turn continues.
2. The resolver runs.
3. Exactly two messages are appended to the conversation, in order: the
   assistant tool-call message and the tool-role result message.
4. Only then does the ToolInvocation handle resolve.

A resolver exception (e.g. a failed rewrite) is not absorbed: nothing is
appended, the handle is marked failed and the exception propagates.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from kb_assistant.models.chat_message import new_id, tool_call_message, tool_result_message
from kb_assistant.runtime_state.conversation import ConversationStore
from kb_assistant.utils import Stopwatch

logger = logging.getLogger(__name__)

Resolver = Callable[[Any], Awaitable[Any]]
RawArguments = Union[str, Dict[str, Any], None]


class ToolArgumentsError(ValueError):
    """Model-supplied arguments do not match the tool's schema."""


# ---------------------------------------------------------------------------
# Tool declarations
# ---------------------------------------------------------------------------


@dataclass
class ToolSpec:
    """
    One callable tool.

    Attributes
    ----------
    name:
        Name the model uses to call the tool.
    description:
        What the tool does, in words the model can act on.
    args_model:
        Pydantic model validating the arguments.
    resolver:
        Async callable receiving the validated args model instance.
    render_kind:
        How clients should draw the result ("articles", "rewrite", ...).
    """

    name: str
    description: str
    args_model: Type[BaseModel]
    resolver: Resolver
    render_kind: str = "tool"

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(),
            },
        }

    def parse_args(self, raw: RawArguments) -> BaseModel:
        if raw is None or raw == "":
            raw = {}
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ToolArgumentsError(f"arguments are not valid JSON: {exc.msg}") from exc
        if not isinstance(raw, dict):
            raise ToolArgumentsError("arguments must be a JSON object")
        try:
            return self.args_model.model_validate(raw)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ToolArgumentsError(f"invalid arguments for {self.name}: {details}") from exc


class ToolRegistry:
    """Name -> ToolSpec map, in registration order."""

    def __init__(self, tools: Optional[List[ToolSpec]] = None) -> None:
        self._tools: Dict[str, ToolSpec] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolSpec) -> None:
        if tool.name in self._tools:
            raise ValueError(f"tool {tool.name!r} is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def to_wire(self) -> List[Dict[str, Any]]:
        return [tool.to_wire() for tool in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


# ---------------------------------------------------------------------------
# Invocation handle (pending -> resolved / rejected / failed)
# ---------------------------------------------------------------------------


class ToolStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"     # resolver returned a result
    REJECTED = "rejected"     # unknown tool / bad arguments, recorded as error result
    FAILED = "failed"         # resolver raised; nothing recorded


class ToolInvocation:
    """
    Render handle for one tool call.

    Starts pending (clients draw a placeholder) and settles exactly once.
    `wait()` returns the result (or the error payload of a rejected call)
    and raises the resolver's exception for a failed one.
    """

    def __init__(
        self,
        tool_name: str,
        raw_arguments: RawArguments,
        call_id: Optional[str] = None,
        render_kind: str = "tool",
    ) -> None:
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments
        self.call_id = call_id or new_id()
        self.render_kind = render_kind
        self.status = ToolStatus.PENDING
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self._settled = asyncio.Event()

    @property
    def pending(self) -> bool:
        return self.status is ToolStatus.PENDING

    def _settle(self, status: ToolStatus, result: Any = None, error: Optional[BaseException] = None) -> None:
        if not self.pending:
            raise RuntimeError(f"tool call {self.call_id} already {self.status.value}")
        self.status = status
        self.result = result
        self.error = error
        self._settled.set()

    def resolve(self, result: Any) -> None:
        self._settle(ToolStatus.RESOLVED, result=result)

    def reject(self, payload: Dict[str, Any]) -> None:
        self._settle(ToolStatus.REJECTED, result=payload)

    def fail(self, error: BaseException) -> None:
        self._settle(ToolStatus.FAILED, error=error)

    async def wait(self) -> Any:
        await self._settled.wait()
        if self.error is not None:
            raise self.error
        return self.result

    def __repr__(self) -> str:
        return f"ToolInvocation({self.tool_name}, {self.call_id}, {self.status.value})"


def to_payload(result: Any) -> Any:
    """JSON-ready form of a resolver result (pydantic models are dumped)."""
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, (list, tuple)):
        return [to_payload(item) for item in result]
    return result


# ---------------------------------------------------------------------------
# Invoker
# ---------------------------------------------------------------------------


class ToolInvoker:
    """Runs registry tools against an explicit conversation store."""

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    def begin(
        self,
        name: str,
        raw_arguments: RawArguments,
        call_id: Optional[str] = None,
    ) -> ToolInvocation:
        """Create the pending handle for a call; nothing runs yet."""
        spec = self.registry.get(name)
        return ToolInvocation(
            tool_name=name,
            raw_arguments=raw_arguments,
            call_id=call_id,
            render_kind=spec.render_kind if spec else "tool",
        )

    async def complete(self, store: ConversationStore, invocation: ToolInvocation) -> ToolInvocation:
        """Validate, run, record two messages, then settle `invocation`."""
        name = invocation.tool_name
        spec = self.registry.get(name)

        if spec is None:
            logger.warning("Model requested unknown tool %r", name)
            self._record_rejection(store, invocation, f"unknown tool {name!r}")
            return invocation

        try:
            args = spec.parse_args(invocation.raw_arguments)
        except ToolArgumentsError as exc:
            logger.warning("Rejected %s call %s: %s", name, invocation.call_id, exc)
            self._record_rejection(store, invocation, str(exc))
            return invocation

        try:
            with Stopwatch(f"tool {name}", logger, level=logging.INFO):
                result = await spec.resolver(args)
        except Exception as exc:
            logger.error("Tool %s call %s failed: %s", name, invocation.call_id, exc)
            invocation.fail(exc)
            raise

        store.append(tool_call_message(name, invocation.call_id, args.model_dump(mode="json")))
        store.append(tool_result_message(name, invocation.call_id, to_payload(result)))
        invocation.resolve(result)
        return invocation

    async def invoke(
        self,
        store: ConversationStore,
        name: str,
        raw_arguments: RawArguments,
        call_id: Optional[str] = None,
    ) -> ToolInvocation:
        """begin() + complete() in one call."""
        invocation = self.begin(name, raw_arguments, call_id)
        return await self.complete(store, invocation)

    @staticmethod
    def _record_rejection(store: ConversationStore, invocation: ToolInvocation, reason: str) -> None:
        raw = invocation.raw_arguments
        if isinstance(raw, dict):
            recorded_args = raw
        else:
            recorded_args = {"_raw": raw} if raw else {}
        payload = {"error": reason}
        store.append(tool_call_message(invocation.tool_name, invocation.call_id, recorded_args))
        store.append(
            tool_result_message(invocation.tool_name, invocation.call_id, payload, is_error=True)
        )
        invocation.reject(payload)
