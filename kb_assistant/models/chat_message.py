# kb_assistant/models/chat_message.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Message model
------------------------------------
Conversation history entries shared by the state store, the turn
controller, the tool invoker and the persistence layer.

A message's content is one of two explicit shapes:

- plain text (`str`), the common case for user and assistant turns;
- an ordered tuple of typed parts (`ToolCallPart` / `ToolResultPart`),
  discriminated on the `type` field, for tool interactions.

Messages are frozen: once a message is part of history it never changes.
"""

from __future__ import annotations

import secrets
import string
from enum import Enum
from typing import Annotated, Any, Dict, Iterable, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr

_ID_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
_ID_SIZE = 7


def new_id(size: int = _ID_SIZE) -> str:
    """Short random url-safe token used for chat, message and tool-call ids."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size))


class Role(str, Enum):
    """Who produced a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallPart(BaseModel):
    """The model asked for `tool_name` to run with `args`."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool-call"] = "tool-call"
    tool_name: str
    tool_call_id: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResultPart(BaseModel):
    """Outcome of the tool call with the same `tool_call_id`."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool-result"] = "tool-result"
    tool_name: str
    tool_call_id: str
    result: Any = None
    is_error: bool = False


ContentPart = Annotated[
    Union[ToolCallPart, ToolResultPart],
    Field(discriminator="type"),
]

MessageContent = Union[StrictStr, Tuple[ContentPart, ...]]


class Message(BaseModel):
    """
    One history entry.

    Fields
    ------
    id:
        Opaque unique token.
    role:
        system | user | assistant | tool
    content:
        Plain text or a tuple of ContentPart.
    name:
        Optional participant name forwarded to the model backend.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Role
    content: MessageContent
    name: Optional[str] = None

    @property
    def text(self) -> Optional[str]:
        """Plain-text content, or None for part-based messages."""
        return self.content if isinstance(self.content, str) else None

    @property
    def parts(self) -> Tuple[Any, ...]:
        """Typed parts, or an empty tuple for plain-text messages."""
        return () if isinstance(self.content, str) else self.content


def user_message(text: str) -> Message:
    return Message(role=Role.USER, content=text)


def assistant_message(text: str) -> Message:
    return Message(role=Role.ASSISTANT, content=text)


def system_message(text: str) -> Message:
    return Message(role=Role.SYSTEM, content=text)


def tool_call_message(tool_name: str, tool_call_id: str, args: Dict[str, Any]) -> Message:
    return Message(
        role=Role.ASSISTANT,
        content=(ToolCallPart(tool_name=tool_name, tool_call_id=tool_call_id, args=args),),
    )


def tool_result_message(
    tool_name: str,
    tool_call_id: str,
    result: Any,
    *,
    is_error: bool = False,
) -> Message:
    return Message(
        role=Role.TOOL,
        content=(
            ToolResultPart(
                tool_name=tool_name,
                tool_call_id=tool_call_id,
                result=result,
                is_error=is_error,
            ),
        ),
    )


def pending_tool_calls(messages: Iterable[Message]) -> Dict[str, ToolCallPart]:
    """
    Return tool calls that have no matching result, keyed by call id.

    Raises ValueError when a result references a call id that was never
    issued earlier in `messages`.
    """
    outstanding: Dict[str, ToolCallPart] = {}
    resolved = set()
    for message in messages:
        for part in message.parts:
            if isinstance(part, ToolCallPart):
                outstanding[part.tool_call_id] = part
            elif isinstance(part, ToolResultPart):
                if part.tool_call_id not in outstanding and part.tool_call_id not in resolved:
                    raise ValueError(
                        f"tool result {part.tool_call_id!r} ({part.tool_name}) "
                        "has no preceding tool call"
                    )
                outstanding.pop(part.tool_call_id, None)
                resolved.add(part.tool_call_id)
    return outstanding
