from typing import Any, List, Optional

import pytest

from kb_assistant.core.tool_invoker import ToolInvoker, ToolRegistry, ToolSpec
from kb_assistant.core.tools_kb import RewriteArgs, SearchArgs
from kb_assistant.core.types import ModelRequest, TextDelta, ToolDirective
from kb_assistant.models.article import Article
from kb_assistant.runtime_state import ConversationStore


def text_events(*pieces: str, done: bool = True) -> List[TextDelta]:
    """TextDelta events for `pieces`, with a trailing final event when `done`."""
    events = []
    content = ""
    for piece in pieces:
        content += piece
        events.append(TextDelta(delta=piece, content=content))
    if done:
        events.append(TextDelta(delta="", content=content, done=True))
    return events


class FakeBackend:
    """
    ModelBackend that replays scripted turns.

    Each call to stream() consumes the next script entry: a list of events,
    optionally followed by an exception to raise at the end.
    """

    def __init__(self, *scripts: List[Any]) -> None:
        self.scripts = list(scripts)
        self.requests: List[ModelRequest] = []

    async def stream(self, request: ModelRequest):
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else []
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item


class FakeTools:
    """Search/rewrite resolvers with controllable results."""

    def __init__(self) -> None:
        self.search_results: List[Article] = [
            Article(id=1, title="Set up call forwarding", content="Open the app..."),
        ]
        self.rewrite_result = "Rewritten in house style."
        self.rewrite_error: Optional[Exception] = None
        self.calls: List[tuple] = []

    async def search(self, args: SearchArgs) -> List[Article]:
        self.calls.append(("search", args.query))
        return self.search_results

    async def rewrite(self, args: RewriteArgs) -> str:
        self.calls.append(("rewrite", args.content))
        if self.rewrite_error is not None:
            raise self.rewrite_error
        return self.rewrite_result

    def registry(self) -> ToolRegistry:
        return ToolRegistry(
            [
                ToolSpec("search", "Find similar articles.", SearchArgs, self.search, "articles"),
                ToolSpec("rewrite", "Rewrite in house style.", RewriteArgs, self.rewrite, "rewrite"),
            ]
        )


@pytest.fixture
def fake_tools() -> FakeTools:
    return FakeTools()


@pytest.fixture
def invoker(fake_tools: FakeTools) -> ToolInvoker:
    return ToolInvoker(fake_tools.registry())


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore(chat_id="chat1", owner_id="u1")


@pytest.fixture
def make_backend():
    return FakeBackend


@pytest.fixture
def search_directive():
    return ToolDirective(name="search", arguments='{"query": "call forwarding"}', call_id="call_1")


@pytest.fixture
def text_deltas():
    return text_events
