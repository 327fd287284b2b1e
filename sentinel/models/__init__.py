from .events import (
    STATUS_BROADCAST_JID,
    SUPPORTED_EVENTS,
    CallEvent,
    CallOffer,
    ChatMessage,
    ConnectionUpdate,
    CredentialsUpdate,
    LastDisconnect,
    MessageKey,
    MessagesUpsert,
    TransportEvent,
    jid_user,
    parse_event,
)

__all__ = [
    "STATUS_BROADCAST_JID",
    "SUPPORTED_EVENTS",
    "CallEvent",
    "CallOffer",
    "ChatMessage",
    "ConnectionUpdate",
    "CredentialsUpdate",
    "LastDisconnect",
    "MessageKey",
    "MessagesUpsert",
    "TransportEvent",
    "jid_user",
    "parse_event",
]
