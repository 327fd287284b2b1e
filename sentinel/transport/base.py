"""Transport abstractions for the chat protocol collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from sentinel.models import CredentialsUpdate, MessageKey, TransportEvent


class TransportError(RuntimeError):
    """Raised when an outbound transport operation fails."""

    def __init__(self, message: str, *, operation: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class ChatTransport(ABC):
    """Opaque chat-protocol session exposing lifecycle events and a few outbound operations."""

    @property
    @abstractmethod
    def is_registered(self) -> bool:
        ...

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def receive(self) -> TransportEvent:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def request_pairing_code(self, number: str) -> str:
        ...

    @abstractmethod
    async def send_message(
        self,
        jid: str,
        payload: dict[str, Any],
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        ...

    @abstractmethod
    async def read_messages(self, keys: Sequence[MessageKey]) -> None:
        ...

    @abstractmethod
    async def reject_call(self, call_id: str, caller: str) -> None:
        ...

    @abstractmethod
    async def send_presence_update(self, state: str) -> None:
        ...

    @abstractmethod
    async def save_credentials(self, update: CredentialsUpdate) -> None:
        ...
