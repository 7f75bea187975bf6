# kb_assistant/core/types.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Shared type helpers
------------------------------------------
Small shared definitions used between the turn controller and the model
backend:

- ModelRequest : what one turn sends to the language model
- TextDelta    : an incremental text event from the model stream
- ToolDirective: a tool-invocation event from the model stream
- ModelEvent   : either of the two
- ModelBackend : protocol any streaming backend (real or fake) satisfies
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

# ---------------------------------------------------------------------------
# Wire shapes
# ---------------------------------------------------------------------------

# {"role": ..., "content": ..., "name"?: ..., "tool_calls"?: ..., "tool_call_id"?: ...}
WireMessage = Dict[str, Any]

# {"type": "function", "function": {"name", "description", "parameters"}}
WireTool = Dict[str, Any]


@dataclass
class ModelRequest:
    """
    One streaming request to the model backend.

    Attributes
    ----------
    model:
        Model identifier, e.g. "gpt-3.5-turbo".
    system:
        Fixed system instruction (persona + capabilities).
    messages:
        Conversation history already mapped to the wire shape.
    tools:
        Tool registry in function-calling form.
    """
    model: str
    system: str
    messages: List[WireMessage]
    tools: List[WireTool] = field(default_factory=list)
    temperature: Optional[float] = None


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

@dataclass
class TextDelta:
    """
    Incremental text.

    Attributes
    ----------
    delta:
        Newly generated text (may be empty on the final event).
    content:
        Cumulative text so far, delta included.
    done:
        True on the last text event of the response.
    """
    delta: str
    content: str
    done: bool = False


@dataclass
class ToolDirective:
    """
    The model asks for a tool.

    `arguments` is either the raw JSON text from the wire or an already
    decoded dict; the tool invoker accepts both.
    """
    name: str
    arguments: Union[str, Dict[str, Any]]
    call_id: Optional[str] = None


ModelEvent = Union[TextDelta, ToolDirective]


class ModelBackend(Protocol):
    """Anything that turns a ModelRequest into an async stream of events."""

    def stream(self, request: ModelRequest) -> AsyncIterator[ModelEvent]:
        ...
