"""In-memory transport for offline runs and testing."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sentinel.models import ConnectionUpdate, CredentialsUpdate, LastDisconnect, MessageKey, TransportEvent

from .base import ChatTransport, TransportError

LOGGER = logging.getLogger(__name__)


class DummyTransport(ChatTransport):
    """Records outbound calls and replays events pushed into it.

    ``failures`` maps an operation name to an exception (raised on every call)
    or a list of exceptions/``None`` consumed one call at a time.
    """

    def __init__(self, settings=None, *, registered: bool = True, pairing_code: str = "ABCD-1234") -> None:
        self._settings = settings
        self.registered = registered
        self.pairing_code = pairing_code
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.failures: Dict[str, Any] = {}
        self.connected = False
        self.closed = False
        self.saved_credentials: List[Dict[str, Any]] = []
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()

    @property
    def is_registered(self) -> bool:
        return self.registered

    def push(self, event: TransportEvent) -> None:
        self._events.put_nowait(event)

    def open(self) -> None:
        self.push(ConnectionUpdate(connection="open"))

    def drop(self, *, status_code: Optional[int] = None, error: Optional[str] = None) -> None:
        last = LastDisconnect(error=error, status_code=status_code) if (error or status_code is not None) else None
        self.push(ConnectionUpdate(connection="close", last_disconnect=last))

    def calls_for(self, operation: str) -> List[Tuple[Any, ...]]:
        return [args for name, args in self.calls if name == operation]

    async def connect(self) -> None:
        LOGGER.debug("Dummy transport connect()")
        self._record("connect")
        self.connected = True

    async def receive(self) -> TransportEvent:
        return await self._events.get()

    async def close(self) -> None:
        LOGGER.debug("Dummy transport close()")
        self.closed = True
        self.connected = False

    async def request_pairing_code(self, number: str) -> str:
        self._record("request_pairing_code", number)
        return self.pairing_code

    async def send_message(
        self,
        jid: str,
        payload: dict[str, Any],
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        self._record("send_message", jid, payload, options)

    async def read_messages(self, keys: Sequence[MessageKey]) -> None:
        self._record("read_messages", list(keys))

    async def reject_call(self, call_id: str, caller: str) -> None:
        self._record("reject_call", call_id, caller)

    async def send_presence_update(self, state: str) -> None:
        self._record("send_presence_update", state)

    async def save_credentials(self, update: CredentialsUpdate) -> None:
        self._record("save_credentials", update.creds)
        self.saved_credentials.append(update.creds)

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        failure = self.failures.get(operation)
        if isinstance(failure, list):
            failure = failure.pop(0) if failure else None
        if failure is None:
            return
        if isinstance(failure, BaseException):
            raise failure
        raise TransportError(str(failure), operation=operation)
