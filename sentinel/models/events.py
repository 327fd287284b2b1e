"""Events delivered by a chat transport."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

STATUS_BROADCAST_JID = "status@broadcast"
USER_JID_SUFFIX = "@s.whatsapp.net"
REVOKE_PROTOCOL_TYPE = 0
SUPPORTED_EVENTS = frozenset({"connection.update", "messages.upsert", "call", "creds.update"})


class _EventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class MessageKey(_EventModel):
    """Addressing key of a chat message."""

    remote_jid: Optional[str] = Field(default=None, alias="remoteJid")
    id: Optional[str] = None
    participant: Optional[str] = None
    from_me: bool = Field(default=False, alias="fromMe")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChatMessage(_EventModel):
    key: MessageKey
    message: Optional[Dict[str, Any]] = None
    push_name: Optional[str] = Field(default=None, alias="pushName")

    @property
    def is_status_broadcast(self) -> bool:
        return self.key.remote_jid == STATUS_BROADCAST_JID

    def revoked_key(self) -> Optional[MessageKey]:
        """Return the key of the deleted message when this is a revoke notice."""

        protocol = (self.message or {}).get("protocolMessage")
        if not isinstance(protocol, dict):
            return None
        if protocol.get("type") != REVOKE_PROTOCOL_TYPE:
            return None
        key = protocol.get("key")
        if not isinstance(key, dict):
            return None
        return MessageKey.model_validate(key)


class LastDisconnect(_EventModel):
    error: Optional[str] = None
    status_code: Optional[int] = Field(default=None, alias="statusCode")

    @field_validator("error", mode="before")
    @classmethod
    def _stringify_error(cls, value: Any) -> Any:
        # the gateway may forward the protocol library's error object as-is
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, dict) and value.get("message"):
            return str(value["message"])
        return str(value)


class ConnectionUpdate(_EventModel):
    event: Literal["connection.update"] = "connection.update"
    connection: Optional[Literal["connecting", "open", "close"]] = None
    last_disconnect: Optional[LastDisconnect] = Field(default=None, alias="lastDisconnect")
    qr: Optional[str] = None


class MessagesUpsert(_EventModel):
    event: Literal["messages.upsert"] = "messages.upsert"
    messages: List[ChatMessage] = Field(default_factory=list)
    type: Optional[str] = None


class CallOffer(_EventModel):
    id: str
    from_: str = Field(alias="from")
    status: Optional[str] = None


class CallEvent(_EventModel):
    event: Literal["call"] = "call"
    calls: List[CallOffer] = Field(default_factory=list)


class CredentialsUpdate(_EventModel):
    event: Literal["creds.update"] = "creds.update"
    creds: Dict[str, Any] = Field(default_factory=dict)


TransportEvent = Annotated[
    Union[ConnectionUpdate, MessagesUpsert, CallEvent, CredentialsUpdate],
    Field(discriminator="event"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(TransportEvent)


def parse_event(name: str, data: Any) -> Any:
    """Build a typed transport event from a gateway ``{event, data}`` frame."""

    if name == "call" and isinstance(data, list):
        data = {"calls": data}
    if data is not None and not isinstance(data, dict):
        raise TypeError(f"Event {name} data must be an object, got {type(data).__name__}")
    payload = dict(data or {})
    payload["event"] = name
    return _EVENT_ADAPTER.validate_python(payload)


def jid_user(jid: Optional[str]) -> str:
    """Return the user part of a JID, or ``Unknown`` when absent."""

    if not jid:
        return "Unknown"
    return jid.split("@", 1)[0] or "Unknown"
