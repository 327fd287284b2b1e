"""Connection state machine and supervisor."""

from sentinel.network.state_machine import (
    ConnectionState,
    ConnectionStateMachine,
    DisconnectKind,
    classify_disconnect,
)
from sentinel.network.supervisor import ConnectionSupervisor, SessionHandle, TransportFactory

__all__ = [
    "ConnectionState",
    "ConnectionStateMachine",
    "ConnectionSupervisor",
    "DisconnectKind",
    "SessionHandle",
    "TransportFactory",
    "classify_disconnect",
]
