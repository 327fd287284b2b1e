"""Connection state machine: typed events in, side-effect commands out.

The machine never performs I/O. ``ConnectionSupervisor`` feeds it events and
executes the commands it returns, in order.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Union

LOGGER = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    IDLE = "IDLE"
    BOOTSTRAPPING = "BOOTSTRAPPING"
    AWAITING_PAIRING = "AWAITING_PAIRING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"


class DisconnectKind(enum.Enum):
    RECOVERABLE = "recoverable"
    TERMINAL = "terminal"


def classify_disconnect(status_code: Optional[int], logged_out_code: int) -> DisconnectKind:
    """Only an explicit logged-out status ends the process; anything else is retried."""

    if status_code is not None and status_code == logged_out_code:
        return DisconnectKind.TERMINAL
    return DisconnectKind.RECOVERABLE


# -- events ---------------------------------------------------------------


@dataclass(frozen=True)
class BootstrapRequested:
    pass


@dataclass(frozen=True)
class SessionCreated:
    generation: int
    registered: bool


@dataclass(frozen=True)
class BootstrapFailed:
    error: Exception


@dataclass(frozen=True)
class ConnectionOpened:
    generation: int


@dataclass(frozen=True)
class ConnectionClosed:
    generation: int
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class PairingSucceeded:
    generation: int


@dataclass(frozen=True)
class PairingFailed:
    generation: int
    error: Exception


@dataclass(frozen=True)
class ShutdownRequested:
    pass


Event = Union[
    BootstrapRequested,
    SessionCreated,
    BootstrapFailed,
    ConnectionOpened,
    ConnectionClosed,
    PairingSucceeded,
    PairingFailed,
    ShutdownRequested,
]


# -- commands -------------------------------------------------------------


@dataclass(frozen=True)
class CreateSession:
    pass


@dataclass(frozen=True)
class StartPairing:
    pass


@dataclass(frozen=True)
class CancelPairing:
    pass


@dataclass(frozen=True)
class ResetRetries:
    pass


@dataclass(frozen=True)
class PrimeStatusSubscription:
    pass


@dataclass(frozen=True)
class StartMaintenance:
    pass


@dataclass(frozen=True)
class StopMaintenance:
    pass


@dataclass(frozen=True)
class DiscardSession:
    pass


@dataclass(frozen=True)
class ScheduleBootstrap:
    delay: float


@dataclass(frozen=True)
class CancelPendingBootstrap:
    pass


@dataclass(frozen=True)
class Terminate:
    exit_code: int
    reason: str
    logged_out: bool = False


Command = Union[
    CreateSession,
    StartPairing,
    CancelPairing,
    ResetRetries,
    PrimeStatusSubscription,
    StartMaintenance,
    StopMaintenance,
    DiscardSession,
    ScheduleBootstrap,
    CancelPendingBootstrap,
    Terminate,
]


_ALLOWED = {
    ConnectionState.IDLE: {ConnectionState.BOOTSTRAPPING, ConnectionState.IDLE},
    ConnectionState.BOOTSTRAPPING: {
        ConnectionState.BOOTSTRAPPING,
        ConnectionState.AWAITING_PAIRING,
        ConnectionState.OPEN,
        ConnectionState.CLOSING,
        ConnectionState.IDLE,
    },
    ConnectionState.AWAITING_PAIRING: {
        ConnectionState.AWAITING_PAIRING,
        ConnectionState.OPEN,
        ConnectionState.CLOSING,
        ConnectionState.IDLE,
    },
    ConnectionState.OPEN: {ConnectionState.CLOSING, ConnectionState.IDLE},
    ConnectionState.CLOSING: {ConnectionState.BOOTSTRAPPING, ConnectionState.IDLE},
}


@dataclass
class ConnectionStateMachine:
    """Owns ``ConnectionState`` and decides what happens on each event."""

    reconnect_delay: float
    logged_out_code: int = 401
    state: ConnectionState = ConnectionState.IDLE
    generation: int = 0
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def intake(self, event: Event) -> List[Command]:
        if isinstance(event, ShutdownRequested):
            return self._shutdown()
        if isinstance(event, BootstrapRequested):
            return self._bootstrap()
        if isinstance(event, SessionCreated):
            return self._session_created(event)
        if isinstance(event, BootstrapFailed):
            return self._bootstrap_failed(event)
        if isinstance(event, ConnectionOpened):
            return self._opened(event)
        if isinstance(event, ConnectionClosed):
            return self._closed(event)
        if isinstance(event, PairingSucceeded):
            return []
        if isinstance(event, PairingFailed):
            return self._pairing_failed(event)
        raise TypeError(f"Unsupported connection event {event!r}")

    def transition(self, next_state: ConnectionState) -> None:
        """Move into ``next_state``, validating allowed transitions."""

        if next_state not in _ALLOWED.get(self.state, set()):
            raise ValueError(f"Invalid transition {self.state.value} → {next_state.value}")
        self.state = next_state
        self.last_transition_at = datetime.now(tz=timezone.utc)

    def _ignore(self, event: Event) -> List[Command]:
        LOGGER.debug("Ignoring %s in state %s", type(event).__name__, self.state.value)
        return []

    def _is_stale(self, generation: int) -> bool:
        return generation != self.generation

    def _bootstrap(self) -> List[Command]:
        if self.state not in (ConnectionState.IDLE, ConnectionState.CLOSING):
            return self._ignore(BootstrapRequested())
        self.transition(ConnectionState.BOOTSTRAPPING)
        self.generation += 1
        return [CreateSession()]

    def _session_created(self, event: SessionCreated) -> List[Command]:
        if self.state is not ConnectionState.BOOTSTRAPPING or self._is_stale(event.generation):
            return self._ignore(event)
        if event.registered:
            return []
        self.transition(ConnectionState.AWAITING_PAIRING)
        return [StartPairing()]

    def _bootstrap_failed(self, event: BootstrapFailed) -> List[Command]:
        if self.state not in (ConnectionState.BOOTSTRAPPING, ConnectionState.AWAITING_PAIRING):
            return self._ignore(event)
        self.transition(ConnectionState.CLOSING)
        return [CancelPairing(), DiscardSession(), ScheduleBootstrap(self.reconnect_delay)]

    def _opened(self, event: ConnectionOpened) -> List[Command]:
        if self._is_stale(event.generation) or self.state not in (
            ConnectionState.BOOTSTRAPPING,
            ConnectionState.AWAITING_PAIRING,
        ):
            return self._ignore(event)
        self.transition(ConnectionState.OPEN)
        return [CancelPairing(), ResetRetries(), PrimeStatusSubscription(), StartMaintenance()]

    def _closed(self, event: ConnectionClosed) -> List[Command]:
        if self._is_stale(event.generation) or self.state not in (
            ConnectionState.BOOTSTRAPPING,
            ConnectionState.AWAITING_PAIRING,
            ConnectionState.OPEN,
        ):
            return self._ignore(event)
        self.transition(ConnectionState.CLOSING)
        commands: List[Command] = [StopMaintenance(), CancelPairing(), DiscardSession()]
        if classify_disconnect(event.status_code, self.logged_out_code) is DisconnectKind.TERMINAL:
            commands.append(Terminate(0, "logged out", logged_out=True))
        else:
            commands.append(ScheduleBootstrap(self.reconnect_delay))
        return commands

    def _pairing_failed(self, event: PairingFailed) -> List[Command]:
        if self._is_stale(event.generation) or self.state is not ConnectionState.AWAITING_PAIRING:
            return self._ignore(event)
        self.transition(ConnectionState.CLOSING)
        return [DiscardSession(), ScheduleBootstrap(self.reconnect_delay)]

    def _shutdown(self) -> List[Command]:
        self.transition(ConnectionState.IDLE)
        return [
            StopMaintenance(),
            CancelPairing(),
            CancelPendingBootstrap(),
            DiscardSession(),
            Terminate(0, "shutdown"),
        ]
