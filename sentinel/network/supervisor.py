"""Connection supervisor: keeps one chat session alive for the life of the process.

The supervisor turns transport notifications into state-machine events,
executes the commands the machine returns and owns everything tied to a single
session (the transport, its event pump, pairing and handler tasks).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sentinel.config import ConfigurationError, SentinelSettings
from sentinel.dedup import DedupCache
from sentinel.handlers import CallHandler, MessageHandler
from sentinel.maintenance import MaintenanceScheduler, subscribe_status_updates
from sentinel.models import CallEvent, ConnectionUpdate, CredentialsUpdate, MessagesUpsert, TransportEvent
from sentinel.network.state_machine import (
    BootstrapFailed,
    BootstrapRequested,
    CancelPairing,
    CancelPendingBootstrap,
    Command,
    ConnectionClosed,
    ConnectionOpened,
    ConnectionState,
    ConnectionStateMachine,
    CreateSession,
    DiscardSession,
    Event,
    PairingFailed,
    PairingSucceeded,
    PrimeStatusSubscription,
    ResetRetries,
    ScheduleBootstrap,
    SessionCreated,
    ShutdownRequested,
    StartMaintenance,
    StartPairing,
    StopMaintenance,
    Terminate,
)
from sentinel.pairing import PairingCoordinator, PairingExhausted
from sentinel.runtime.timers import Clock, LoopClock, Timer, TimerRegistry
from sentinel.transport import ChatTransport

LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[SentinelSettings], ChatTransport]

CONFIGURATION_EXIT_CODE = 2


@dataclass(eq=False)
class SessionHandle:
    """The current transport plus every task started on its behalf."""

    generation: int
    transport: ChatTransport
    tasks: TimerRegistry


class ConnectionSupervisor:
    """Bootstraps sessions, reacts to lifecycle events and decides reconnect vs. terminate.

    At most one ``SessionHandle`` and at most one pending bootstrap timer exist
    at any time. The dedup cache is the only state carried across sessions.
    """

    def __init__(
        self,
        settings: SentinelSettings,
        transport_factory: TransportFactory,
        *,
        clock: Optional[Clock] = None,
        pairing: Optional[PairingCoordinator] = None,
        maintenance: Optional[MaintenanceScheduler] = None,
        dedup: Optional[DedupCache] = None,
    ) -> None:
        self.settings = settings
        self.transport_factory = transport_factory
        self.clock: Clock = clock or LoopClock()
        self.machine = ConnectionStateMachine(
            reconnect_delay=float(settings.reconnect_delay_seconds),
            logged_out_code=int(settings.logged_out_status_code),
        )
        self.pairing = pairing or PairingCoordinator(settings, clock=self.clock)
        self.maintenance = maintenance or MaintenanceScheduler(settings, clock=self.clock)
        self.dedup = dedup or DedupCache(
            int(settings.dedup_capacity),
            float(settings.dedup_ttl_seconds),
            clock=self.clock,
        )
        self.message_handler = MessageHandler(settings, self.dedup)
        self.call_handler = CallHandler(settings)
        self._timers = TimerRegistry(self.clock, name="supervisor")
        self._handle: Optional[SessionHandle] = None
        self._pairing_task: Optional[asyncio.Task[None]] = None
        self._pending_bootstrap: Optional[Timer] = None
        self._exit_code: Optional[int] = None
        self._closed = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    @property
    def handle(self) -> Optional[SessionHandle]:
        return self._handle

    @property
    def bootstrap_pending(self) -> bool:
        return self._pending_bootstrap is not None and self._pending_bootstrap.active

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    async def bootstrap(self) -> None:
        """Start a fresh session; raises ``ConfigurationError`` on bad settings."""

        if self._exit_code is not None:
            return
        self.settings.ensure_configured()
        self._cancel_pending_bootstrap()
        await self._apply(BootstrapRequested())

    async def shutdown(self) -> None:
        LOGGER.info("Shutting down gracefully...")
        await self._apply(ShutdownRequested())

    async def wait_closed(self) -> int:
        await self._closed.wait()
        assert self._exit_code is not None
        return self._exit_code

    async def _apply(self, event: Event) -> None:
        for command in self.machine.intake(event):
            await self._execute(command)

    async def _execute(self, command: Command) -> None:
        if isinstance(command, CreateSession):
            await self._create_session()
        elif isinstance(command, StartPairing):
            self._start_pairing()
        elif isinstance(command, CancelPairing):
            self._cancel_pairing()
        elif isinstance(command, ResetRetries):
            self.pairing.reset()
        elif isinstance(command, PrimeStatusSubscription):
            await self._prime_status_subscription()
        elif isinstance(command, StartMaintenance):
            self._start_maintenance()
        elif isinstance(command, StopMaintenance):
            self.maintenance.stop()
        elif isinstance(command, DiscardSession):
            await self._discard_session()
        elif isinstance(command, ScheduleBootstrap):
            self._schedule_bootstrap(command.delay)
        elif isinstance(command, CancelPendingBootstrap):
            self._cancel_pending_bootstrap()
        elif isinstance(command, Terminate):
            self._finish(command.exit_code, command.reason, logged_out=command.logged_out)
        else:
            raise TypeError(f"Unsupported supervisor command {command!r}")

    # -- session lifecycle -------------------------------------------------

    async def _create_session(self) -> None:
        generation = self.machine.generation
        handle: Optional[SessionHandle] = None
        try:
            transport = self.transport_factory(self.settings)
            handle = SessionHandle(
                generation=generation,
                transport=transport,
                tasks=TimerRegistry(self.clock, name=f"session-{generation}"),
            )
            self._handle = handle
            await transport.connect()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Session bootstrap failed: %s", exc)
            await self._apply(BootstrapFailed(exc))
            return
        if self._handle is not handle:
            LOGGER.debug("Session %s replaced while connecting; dropping it", generation)
            return
        handle.tasks.spawn(self._pump(handle), name=f"session-{generation}-events")
        LOGGER.info("%s session %s initialised", self.settings.bot_name, generation)
        await self._apply(SessionCreated(generation=generation, registered=handle.transport.is_registered))

    async def _discard_session(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        self._pairing_task = None
        handle.tasks.cancel_all()
        try:
            await handle.transport.close()
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress transport close error", exc_info=True)

    async def _pump(self, handle: SessionHandle) -> None:
        while self._handle is handle:
            try:
                event = await handle.transport.receive()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Transport event stream failed: %s", exc)
                if self._handle is handle:
                    await self._apply(ConnectionClosed(generation=handle.generation, error=str(exc)))
                return
            if self._handle is not handle:
                LOGGER.debug("Dropping event from stale session %s", handle.generation)
                return
            await self._on_event(handle, event)

    async def _on_event(self, handle: SessionHandle, event: TransportEvent) -> None:
        if isinstance(event, ConnectionUpdate):
            await self._on_connection_update(handle, event)
        elif isinstance(event, CredentialsUpdate):
            try:
                await handle.transport.save_credentials(event)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Credential save failed: %s", exc)
        elif isinstance(event, MessagesUpsert):
            handle.tasks.spawn(
                self.message_handler.handle(handle.transport, event),
                name=f"session-{handle.generation}-messages",
            )
        elif isinstance(event, CallEvent):
            handle.tasks.spawn(
                self.call_handler.handle(handle.transport, event),
                name=f"session-{handle.generation}-calls",
            )

    async def _on_connection_update(self, handle: SessionHandle, update: ConnectionUpdate) -> None:
        if update.connection == "open":
            await self._apply(ConnectionOpened(generation=handle.generation))
            if self.state is ConnectionState.OPEN:
                LOGGER.info("%s is ONLINE!", self.settings.bot_name)
        elif update.connection == "close":
            last = update.last_disconnect
            await self._apply(
                ConnectionClosed(
                    generation=handle.generation,
                    status_code=last.status_code if last else None,
                    error=last.error if last else None,
                )
            )
        else:
            LOGGER.debug("Connection update: %s", update.connection)

    # -- pairing -----------------------------------------------------------

    def _start_pairing(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._pairing_task = handle.tasks.spawn(self._pair(handle), name=f"session-{handle.generation}-pairing")

    def _cancel_pairing(self) -> None:
        task = self._pairing_task
        self._pairing_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _pair(self, handle: SessionHandle) -> None:
        try:
            await self.pairing.run(handle.transport)
        except PairingExhausted as exc:
            LOGGER.error("%s; restarting session", exc)
            await self._apply(PairingFailed(generation=handle.generation, error=exc))
            return
        await self._apply(PairingSucceeded(generation=handle.generation))

    # -- open-state work ---------------------------------------------------

    async def _prime_status_subscription(self) -> None:
        handle = self._handle
        if handle is None or not self.settings.auto_view_status:
            return
        try:
            await subscribe_status_updates(handle.transport)
        except Exception as exc:  # noqa: BLE001
            # TODO: escalate when priming keeps failing across consecutive sessions
            LOGGER.warning("Status initialization failed (normal on first run): %s", exc)
        else:
            LOGGER.info("Status viewing initialized")

    def _start_maintenance(self) -> None:
        handle = self._handle
        if handle is None or self.state is not ConnectionState.OPEN:
            LOGGER.debug("Session left OPEN before maintenance could start")
            return
        self.maintenance.start(handle.transport)

    # -- reconnect / termination -------------------------------------------

    def _schedule_bootstrap(self, delay: float) -> None:
        if self.bootstrap_pending:
            LOGGER.debug("Bootstrap already pending; not scheduling another")
            return
        LOGGER.warning("Connection lost. Reconnecting in %.1fs...", delay)
        self._pending_bootstrap = self._timers.call_later(delay, self._run_scheduled_bootstrap, name="bootstrap")

    def _cancel_pending_bootstrap(self) -> None:
        timer = self._pending_bootstrap
        self._pending_bootstrap = None
        if timer is not None:
            timer.cancel()

    async def _run_scheduled_bootstrap(self) -> None:
        self._pending_bootstrap = None
        try:
            await self.bootstrap()
        except ConfigurationError as exc:
            LOGGER.error("Configuration error: %s", exc)
            self._finish(CONFIGURATION_EXIT_CODE, str(exc))

    def _finish(self, exit_code: int, reason: str, *, logged_out: bool = False) -> None:
        if self._exit_code is not None:
            return
        self._exit_code = exit_code
        self._cancel_pending_bootstrap()
        self._timers.cancel_all()
        self.dedup.clear()
        if logged_out:
            LOGGER.warning("Logged out. Delete %s and restart to pair again.", self.settings.auth_dir)
        else:
            LOGGER.info("Supervisor stopped (%s)", reason)
        self._closed.set()
