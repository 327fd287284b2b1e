"""Periodic keep-alive work run while a session is open."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sentinel.config import SentinelSettings
from sentinel.models import STATUS_BROADCAST_JID
from sentinel.runtime.timers import Clock, Timer, TimerRegistry
from sentinel.transport import ChatTransport

LOGGER = logging.getLogger(__name__)

PRESENCE_AVAILABLE = "available"


class TaskKind(enum.Enum):
    HEARTBEAT = "heartbeat"
    RESUBSCRIBE_STATUS = "resubscribe_status"


@dataclass
class ScheduledTask:
    kind: TaskKind
    interval: float
    timer: Timer


async def subscribe_status_updates(transport: ChatTransport) -> None:
    """Re-assert interest in status broadcasts with an empty status send."""

    await transport.send_message(STATUS_BROADCAST_JID, {"text": ""}, {"statusJidList": []})


class MaintenanceScheduler:
    """Runs the heartbeat and status resubscription against the current transport."""

    def __init__(self, settings: SentinelSettings, *, clock: Optional[Clock] = None) -> None:
        self.heartbeat_interval = float(settings.heartbeat_interval_seconds)
        self.resubscribe_interval = float(settings.status_resubscribe_interval_seconds)
        self.resubscribe_enabled = bool(settings.auto_view_status)
        self._timers = TimerRegistry(clock, name="maintenance")
        self._tasks: Dict[TaskKind, ScheduledTask] = {}
        self._transport: Optional[ChatTransport] = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def active_kinds(self) -> set[TaskKind]:
        return {kind for kind, task in self._tasks.items() if task.timer.active}

    def start(self, transport: ChatTransport) -> None:
        self.stop()
        self._transport = transport
        self._schedule(TaskKind.HEARTBEAT, self.heartbeat_interval, transport, immediate=True)
        if self.resubscribe_enabled:
            self._schedule(TaskKind.RESUBSCRIBE_STATUS, self.resubscribe_interval, transport, immediate=False)
        LOGGER.debug("Maintenance started: %s", sorted(kind.value for kind in self._tasks))

    def stop(self) -> None:
        """Cancel every maintenance timer; safe to call when nothing runs."""

        if not self._tasks and self._transport is None:
            return
        for task in self._tasks.values():
            task.timer.cancel()
        self._tasks.clear()
        self._timers.cancel_all()
        self._transport = None
        LOGGER.debug("Maintenance stopped")

    def _schedule(self, kind: TaskKind, interval: float, transport: ChatTransport, *, immediate: bool) -> None:
        existing = self._tasks.pop(kind, None)
        if existing is not None:
            existing.timer.cancel()
        if kind is TaskKind.HEARTBEAT:
            callback = lambda: self._heartbeat(transport)  # noqa: E731
        else:
            callback = lambda: self._resubscribe(transport)  # noqa: E731
        timer = self._timers.call_every(interval, callback, name=kind.value, immediate=immediate)
        self._tasks[kind] = ScheduledTask(kind=kind, interval=interval, timer=timer)

    async def _heartbeat(self, transport: ChatTransport) -> None:
        if transport is not self._transport:
            return
        try:
            await transport.send_presence_update(PRESENCE_AVAILABLE)
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Presence update failed: %s", exc)

    async def _resubscribe(self, transport: ChatTransport) -> None:
        if transport is not self._transport:
            return
        try:
            await subscribe_status_updates(transport)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Status resubscription failed: %s", exc)
        else:
            LOGGER.info("Status subscription refreshed")
