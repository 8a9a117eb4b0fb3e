from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Optional, Union

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from findmyworker_chat.core.config import ChatClientConfig

_END = object()


class FakeChannel:
    """In-memory stand-in for a websocket client connection."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent: list[str] = []
        self.closed_with: Optional[int] = None
        self.close_code: Optional[int] = None
        self.fail_send: Optional[Exception] = None
        self.close_turns = 0
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    def __aiter__(self) -> "FakeChannel":
        return self

    async def __anext__(self) -> Union[str, bytes]:
        item = await self._inbox.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    def push(self, frame: Union[dict[str, Any], str, bytes]) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame, ensure_ascii=False)
        self._inbox.put_nowait(frame)

    def drop(self, code: Optional[int], reason: str = "") -> None:
        rcvd = Close(code, reason) if code is not None else None
        self._inbox.put_nowait(ConnectionClosed(rcvd, None))

    def end(self, code: int) -> None:
        self.close_code = code
        self._inbox.put_nowait(_END)

    async def send(self, data: str) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        # Simulates a close handshake that spans several loop iterations.
        for _ in range(self.close_turns):
            await asyncio.sleep(0)
        self.closed_with = code

    def sent_payloads(self) -> list[dict[str, Any]]:
        return [json.loads(item) for item in self.sent]


class FakeConnector:
    def __init__(self) -> None:
        self.urls: list[str] = []
        self.channels: list[FakeChannel] = []
        self.failures: list[BaseException] = []
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, url: str) -> FakeChannel:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        channel = FakeChannel(url)
        self.channels.append(channel)
        return channel

    @property
    def latest(self) -> FakeChannel:
        return self.channels[-1]


class RecordingSleep:
    """Reconnect timer stand-in; ``hold`` keeps timers pending until released."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self.hold = False
        self._release = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.hold:
            await self._release.wait()

    def release(self) -> None:
        self.hold = False
        self._release.set()


async def settle(
    predicate: Optional[Callable[[], bool]] = None, *, rounds: int = 200
) -> None:
    """Let pending tasks run until ``predicate`` holds (or the loop goes idle)."""
    for _ in range(rounds):
        if predicate is not None and predicate():
            return
        await asyncio.sleep(0)
    if predicate is not None:
        assert predicate(), "condition not reached while settling event loop"


@pytest.fixture()
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture()
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def chat_config() -> ChatClientConfig:
    return ChatClientConfig(
        ws_base_url="ws://chat.test",
        api_base_url="http://chat.test/api/",
        ping_interval_seconds=0.0,
    )


@pytest.fixture()
def settle_loop() -> Callable[..., Any]:
    return settle
