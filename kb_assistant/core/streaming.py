# kb_assistant/core/streaming.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - Streaming text channel
---------------------------------------------
`StreamableText` carries one assistant reply from the turn controller
(single producer) to any number of consumers while it is being generated.

Producer side:
    update(delta)  -> append text, wake consumers (any number of times)
    done()         -> close, exactly once
    fail(error)    -> close with an error instead

Consumer side:
    value          -> text so far (final once closed)
    updates()      -> async iterator over every delta, from the first one
    wait_closed()  -> final text, or the producer's error

Everything runs on one event loop; none of the producer methods await.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Optional


class StreamClosedError(RuntimeError):
    """Raised when a producer touches a channel that is already closed."""


class StreamableText:
    """Append-only text value with async change notification."""

    def __init__(self, initial: str = "") -> None:
        self._deltas: List[str] = [initial] if initial else []
        self._value: str = initial
        self._closed: bool = False
        self._error: Optional[BaseException] = None
        self._waiter: asyncio.Event = asyncio.Event()

    # ------------------------------------------------------------------
    # Producer API
    # ------------------------------------------------------------------

    def update(self, delta: str) -> None:
        if self._closed:
            raise StreamClosedError("update() after the channel was closed")
        if not delta:
            return
        self._deltas.append(delta)
        self._value += delta
        self._wake()

    def done(self) -> None:
        if self._closed:
            raise StreamClosedError("done() called twice")
        self._closed = True
        self._wake()

    def fail(self, error: BaseException) -> None:
        if self._closed:
            raise StreamClosedError("fail() after the channel was closed")
        self._closed = True
        self._error = error
        self._wake()

    # ------------------------------------------------------------------
    # Consumer API
    # ------------------------------------------------------------------

    @property
    def value(self) -> str:
        return self._value

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    async def updates(self) -> AsyncIterator[str]:
        """Yield every delta in order; re-raises the error of a failed channel."""
        index = 0
        while True:
            while index < len(self._deltas):
                yield self._deltas[index]
                index += 1
            if self._closed:
                if self._error is not None:
                    raise self._error
                return
            await self._waiter.wait()

    async def wait_closed(self) -> str:
        while not self._closed:
            await self._waiter.wait()
        if self._error is not None:
            raise self._error
        return self._value

    def _wake(self) -> None:
        waiter, self._waiter = self._waiter, asyncio.Event()
        waiter.set()

    def __repr__(self) -> str:
        state = "failed" if self._error else ("done" if self._closed else "open")
        return f"StreamableText({state}, {len(self._value)} chars)"
