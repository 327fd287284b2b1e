"""Clock and timer registry used by every scheduled piece of the runtime.

Timers and background tasks are always created through a ``TimerRegistry`` so
that the owner of a piece of state can cancel everything it started in one
call when that state is torn down.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol, Set

LOGGER = logging.getLogger(__name__)

TimerCallback = Callable[[], Optional[Awaitable[None]]]


class Cancelable(Protocol):
    def cancel(self) -> None:
        ...


class Clock(Protocol):
    """Time source able to arm one-shot callbacks."""

    def time(self) -> float:
        ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Cancelable:
        ...

    async def sleep(self, delay: float) -> None:
        ...


class LoopClock:
    """Clock backed by the running asyncio event loop."""

    def time(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback, *args)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


@dataclass(eq=False)
class Timer:
    """One-shot or periodic timer owned by a registry."""

    name: str
    interval: float
    periodic: bool
    _registry: TimerRegistry = field(repr=False)
    _callback: TimerCallback = field(repr=False)
    _handle: Optional[Cancelable] = field(default=None, repr=False)
    _tasks: Set[asyncio.Task[None]] = field(default_factory=set, repr=False)
    cancelled: bool = False
    fired: int = 0

    @property
    def active(self) -> bool:
        return not self.cancelled and (self._handle is not None or bool(self._tasks))

    def cancel(self) -> None:
        """Cancel the pending callback and any run of it still in flight."""

        if self.cancelled:
            return
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        current = _current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._registry._forget(self)

    def _arm(self, delay: float) -> None:
        self._handle = self._registry.clock.call_later(delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self.cancelled:
            return
        self.fired += 1
        if self.periodic:
            self._arm(self.interval)
        try:
            result = self._callback()
        except Exception:  # noqa: BLE001
            LOGGER.exception("Timer %s callback failed", self.name)
            result = None
        if asyncio.iscoroutine(result):
            task = asyncio.get_running_loop().create_task(result, name=f"timer-{self.name}")
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
        elif not self.periodic:
            self._registry._forget(self)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        _log_task_failure(task)
        if not self.periodic and not self._tasks:
            self._registry._forget(self)


class TimerRegistry:
    """Tracks timers and tasks so they can be cancelled as a unit."""

    def __init__(self, clock: Optional[Clock] = None, *, name: str = "timers") -> None:
        self.clock: Clock = clock or LoopClock()
        self.name = name
        self._timers: Set[Timer] = set()
        self._tasks: Set[asyncio.Task[Any]] = set()

    def call_later(self, delay: float, callback: TimerCallback, *, name: str) -> Timer:
        timer = Timer(name=name, interval=delay, periodic=False, _registry=self, _callback=callback)
        self._timers.add(timer)
        timer._arm(delay)
        return timer

    def call_every(
        self,
        interval: float,
        callback: TimerCallback,
        *,
        name: str,
        immediate: bool = False,
    ) -> Timer:
        if interval <= 0:
            raise ValueError(f"Timer interval must be positive (got {interval})")
        timer = Timer(name=name, interval=interval, periodic=True, _registry=self, _callback=callback)
        self._timers.add(timer)
        if immediate:
            timer._fire()
        else:
            timer._arm(interval)
        return timer

    def spawn(self, coro: Awaitable[Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def cancel_all(self) -> None:
        """Cancel every timer and task owned by the registry.

        The task calling this is left running; it is expected to return on its
        own once it sees its owner has been torn down.
        """

        for timer in list(self._timers):
            timer.cancel()
        current = _current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._tasks = {task for task in self._tasks if task is current}

    def active_count(self) -> int:
        timers = sum(1 for timer in self._timers if timer.active)
        tasks = sum(1 for task in self._tasks if not task.done())
        return timers + tasks

    def _forget(self, timer: Timer) -> None:
        self._timers.discard(timer)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        _log_task_failure(task)


def _current_task() -> Optional[asyncio.Task[Any]]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _log_task_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOGGER.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)
