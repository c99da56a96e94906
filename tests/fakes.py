"""Test doubles and data factories shared across the test suite.

- ``FakeWebSocket`` / ``FakeOpener``: in-memory stand-ins for the
  ``websockets`` client connection and the opener that dials it.
- ``FakeClock``: manually advanced monotonic clock.
- ``make_*``: JSON-ready chart and history dicts with keyword overrides.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from uuid import uuid4

from websockets.protocol import State

from flexy.services.connection_manager import ChatConnectionManager

_CLOSED = object()


class FakeWebSocket:
    """Async-iterable socket fed by the test through ``feed`` / ``drop``."""

    def __init__(self) -> None:
        self.state = State.OPEN
        self.close_code: int | None = None
        self.sent: list[str] = []
        self.close_calls: list[tuple[int, str]] = []
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, raw: str | bytes) -> None:
        self._inbox.put_nowait(raw)

    def feed_json(self, payload: dict) -> None:
        self.feed(json.dumps(payload))

    def drop(self, code: int = 1006) -> None:
        """Simulate the server side closing the connection."""
        self.close_code = code
        self.state = State.CLOSED
        self._inbox.put_nowait(_CLOSED)

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self.close_code = code
        self.state = State.CLOSED
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> str | bytes:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOpener:
    """Records every dial; returns a fresh FakeWebSocket or raises ``fail``.

    ``clock`` / ``elapse`` let a failing dial take simulated time.
    """

    def __init__(
        self,
        *,
        fail: Exception | None = None,
        clock: FakeClock | None = None,
        elapse: float = 0.0,
    ) -> None:
        self.fail = fail
        self.clock = clock
        self.elapse = elapse
        self.urls: list[str] = []
        self.sockets: list[FakeWebSocket] = []

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        await asyncio.sleep(0)
        if self.clock is not None:
            self.clock.advance(self.elapse)
        if self.fail is not None:
            raise self.fail
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws


async def settle(rounds: int = 10) -> None:
    """Give background tasks a few loop iterations to run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_manager(
    *,
    session_id: str = "sess-1",
    token: str | None = "tok",
    opener: FakeOpener | None = None,
    clock: FakeClock | None = None,
    ws_base_url: str = "ws://test/ws",
    **kwargs: object,
) -> ChatConnectionManager:
    return ChatConnectionManager(
        session_id,
        ws_base_url=ws_base_url,
        token_provider=lambda: token,
        opener=opener or FakeOpener(),
        clock=clock or FakeClock(),
        **kwargs,
    )


def make_chart(**overrides: object) -> dict:
    """Return a bare chart dict (shape ``{"type": ..., "title": ..., "data": ...}``)."""
    defaults: dict = {
        "type": "bar",
        "title": "Revenue by region",
        "data": {
            "labels": ["North", "South"],
            "datasets": [{"label": "Revenue", "data": [120, 80]}],
        },
    }
    return {**defaults, **overrides}


def make_history_message(**overrides: object) -> dict:
    """Return a message dict as served by the history endpoint."""
    defaults: dict = {
        "id": 1,
        "session_id": 7,
        "message_type": "user",
        "content": "How did sales do?",
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    return {**defaults, **overrides}


def make_session_info(**overrides: object) -> dict:
    defaults: dict = {
        "id": 7,
        "workspace_id": 42,
        "session_id": f"sess-{uuid4().hex[:8]}",
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    return {**defaults, **overrides}
