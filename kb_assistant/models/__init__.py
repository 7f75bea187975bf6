"""
Pydantic models shared by the KB Article Assistant server.

    from kb_assistant.models import Message, Role, Article
"""

from .article import Article
from .chat_message import (
    ContentPart,
    Message,
    MessageContent,
    Role,
    ToolCallPart,
    ToolResultPart,
    assistant_message,
    new_id,
    pending_tool_calls,
    system_message,
    tool_call_message,
    tool_result_message,
    user_message,
)
from .chat_record import ChatRecord, ChatSummary
from .chat_request import ChatRequest, ChatTurnResponse
from .render import AssistantRender, RenderItem, RenderState, UserRender

__all__ = [
    "Article",
    "AssistantRender",
    "ChatRecord",
    "ChatRequest",
    "ChatSummary",
    "ChatTurnResponse",
    "ContentPart",
    "Message",
    "MessageContent",
    "RenderItem",
    "RenderState",
    "Role",
    "ToolCallPart",
    "ToolResultPart",
    "UserRender",
    "assistant_message",
    "new_id",
    "pending_tool_calls",
    "system_message",
    "tool_call_message",
    "tool_result_message",
    "user_message",
]
