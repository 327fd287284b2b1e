import asyncio
import heapq
from itertools import count
from typing import Any, Callable, List

import pytest

from sentinel.config import SentinelSettings
from sentinel.transport import DummyTransport


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class _ManualHandle:
    def __init__(self, when: float, seq: int, callback: Callable[..., Any], args: tuple) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class ManualClock:
    """Deterministic clock; time only moves through ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: List[tuple] = []
        self._seq = count()
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> _ManualHandle:
        handle = _ManualHandle(self.now + max(0.0, delay), next(self._seq), callback, args)
        heapq.heappush(self._queue, (handle.when, handle.seq, handle))
        return handle

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        future = asyncio.get_running_loop().create_future()
        self.call_later(delay, _resolve, future)
        await future

    def pending(self) -> int:
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await settle()
        while self._queue and self._queue[0][0] <= target:
            _, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = handle.when
            handle.callback(*handle.args)
            await settle()
        self.now = target
        await settle()


class TransportRecorder:
    """Transport factory handing out a fresh DummyTransport per session."""

    def __init__(self, *, registered: bool = True) -> None:
        self.registered = registered
        self.created: List[DummyTransport] = []
        self.fail_next: List[Exception] = []

    def __call__(self, settings: SentinelSettings) -> DummyTransport:
        if self.fail_next:
            raise self.fail_next.pop(0)
        transport = DummyTransport(settings, registered=self.registered)
        self.created.append(transport)
        return transport

    @property
    def current(self) -> DummyTransport:
        return self.created[-1]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def make_settings() -> Callable[..., SentinelSettings]:
    def _make(**overrides: Any) -> SentinelSettings:
        values: dict[str, Any] = {
            "bot_name": "sentinel-test",
            "owner_number": "254700000001",
            "transport": "dummy",
            "pairing_number": "254700000002",
        }
        values.update(overrides)
        return SentinelSettings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> SentinelSettings:
    return make_settings()


@pytest.fixture
def transports() -> TransportRecorder:
    return TransportRecorder()
