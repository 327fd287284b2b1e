"""Chat transport implementations."""

from .base import ChatTransport, TransportError
from .dummy import DummyTransport
from .gateway import GatewayTransport

__all__ = ["ChatTransport", "TransportError", "DummyTransport", "GatewayTransport"]
