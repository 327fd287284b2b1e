"""WebSocket client for a protocol gateway sidecar.

The gateway owns the chat protocol itself (handshake, encryption, credential
storage). This transport only frames requests and events as JSON text:

- request:  ``{"id", "op", "args"}``
- response: ``{"id", "ok", "result"}`` or ``{"id", "ok": false, "error": {"message", "statusCode"}}``
- event:    ``{"event", "data"}``
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from itertools import count
from typing import Any, Callable, Dict, Optional, Sequence

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from sentinel.config import SentinelSettings
from sentinel.models import (
    SUPPORTED_EVENTS,
    ConnectionUpdate,
    CredentialsUpdate,
    LastDisconnect,
    MessageKey,
    TransportEvent,
    parse_event,
)

from .base import ChatTransport, TransportError

LOGGER = logging.getLogger(__name__)


class GatewayTransport(ChatTransport):
    """Chat transport speaking JSON frames to a protocol gateway."""

    def __init__(self, settings: SentinelSettings, *, connector: Optional[Callable[[str], Any]] = None) -> None:
        self._settings = settings
        self._connector = connector or websockets.connect
        self._ws: Any = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._pending: Dict[str, asyncio.Future[Any]] = {}
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._ids = count(1)
        self._registered = False
        self._closing = False

    @property
    def is_registered(self) -> bool:
        return self._registered

    async def connect(self) -> None:
        url = str(self._settings.gateway_ws_url)
        timeout = float(self._settings.connect_timeout_seconds)
        LOGGER.info("Connecting to protocol gateway at %s", url)
        try:
            self._ws = await asyncio.wait_for(self._connector(url), timeout=timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise TransportError(f"Gateway connect failed: {exc}", operation="connect") from exc
        self._reader = asyncio.create_task(self._read_loop(), name="gateway-reader")
        result = await self._request("init", self._init_args(), timeout=timeout)
        self._registered = bool(isinstance(result, dict) and result.get("registered"))
        LOGGER.debug("Gateway session initialised registered=%s", self._registered)

    async def receive(self) -> TransportEvent:
        return await self._events.get()

    async def close(self) -> None:
        self._closing = True
        reader = self._reader
        if reader:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._reader = None
        if self._ws is not None:
            LOGGER.info("Closing protocol gateway transport")
            try:
                await self._ws.close()
            except Exception:  # noqa: BLE001
                LOGGER.debug("Suppress gateway close error", exc_info=True)
            self._ws = None
        self._fail_pending(TransportError("Gateway transport closed"))

    async def request_pairing_code(self, number: str) -> str:
        result = await self._request("requestPairingCode", {"phoneNumber": number})
        code = result.get("code") if isinstance(result, dict) else result
        if not code:
            raise TransportError("Gateway returned no pairing code", operation="requestPairingCode")
        return str(code)

    async def send_message(
        self,
        jid: str,
        payload: dict[str, Any],
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        args: Dict[str, Any] = {"jid": jid, "content": payload}
        if options:
            args["options"] = options
        await self._request("sendMessage", args)

    async def read_messages(self, keys: Sequence[MessageKey]) -> None:
        await self._request("readMessages", {"keys": [key.to_wire() for key in keys]})

    async def reject_call(self, call_id: str, caller: str) -> None:
        await self._request("rejectCall", {"callId": call_id, "callFrom": caller})

    async def send_presence_update(self, state: str) -> None:
        await self._request("sendPresenceUpdate", {"type": state})

    async def save_credentials(self, update: CredentialsUpdate) -> None:
        await self._request("saveCreds", {"creds": update.creds})

    def _init_args(self) -> Dict[str, Any]:
        settings = self._settings
        return {
            "version": settings.protocol_version,
            "authDir": str(settings.auth_dir),
            "browser": list(settings.browser),
            "connectTimeoutMs": int(settings.connect_timeout_seconds * 1000),
            "defaultQueryTimeoutMs": int(settings.query_timeout_seconds * 1000),
            "keepAliveIntervalMs": int(settings.keepalive_interval_seconds * 1000),
            "markOnlineOnConnect": settings.mark_online_on_connect,
            "syncFullHistory": settings.sync_full_history,
            "printQRInTerminal": False,
        }

    async def _request(self, op: str, args: Dict[str, Any], *, timeout: Optional[float] = None) -> Any:
        if self._ws is None:
            raise TransportError("Gateway transport not connected", operation=op)
        request_id = f"{op}-{next(self._ids)}"
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send(json.dumps({"id": request_id, "op": op, "args": args}))
            return await asyncio.wait_for(future, timeout=timeout or float(self._settings.query_timeout_seconds))
        except asyncio.TimeoutError as exc:
            raise TransportError(f"Gateway request {op} timed out", operation=op) from exc
        except ConnectionClosed as exc:
            raise TransportError(f"Gateway connection closed during {op}: {exc}", operation=op) from exc
        finally:
            self._pending.pop(request_id, None)

    async def _read_loop(self) -> None:
        error: Optional[str] = None
        try:
            async for raw in self._ws:
                self._dispatch(raw)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            error = str(exc)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Gateway reader failed: %s", exc)
            error = str(exc)
        if self._closing:
            return
        self._fail_pending(TransportError("Gateway connection lost"))
        self._events.put_nowait(
            ConnectionUpdate(
                connection="close",
                last_disconnect=LastDisconnect(error=error or "gateway connection closed"),
            )
        )

    def _dispatch(self, raw: Any) -> None:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            frame = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            LOGGER.warning("Dropping non-JSON gateway frame")
            return
        if not isinstance(frame, dict):
            LOGGER.warning("Dropping gateway frame that is not an object")
            return
        if "event" in frame:
            if not isinstance(frame["event"], str) or frame["event"] not in SUPPORTED_EVENTS:
                LOGGER.debug("Ignoring unsupported gateway event %s", frame["event"])
                return
            try:
                event = parse_event(str(frame["event"]), frame.get("data"))
            except (ValidationError, TypeError, ValueError) as exc:
                LOGGER.warning("Dropping invalid gateway event %s: %s", frame.get("event"), exc)
                fallback = _fallback_close(frame)
                if fallback is not None:
                    self._events.put_nowait(fallback)
                return
            self._events.put_nowait(event)
            return
        future = self._pending.get(str(frame.get("id")))
        if future is None or future.done():
            LOGGER.debug("Ignoring gateway response without waiter id=%s", frame.get("id"))
            return
        if frame.get("ok", True):
            future.set_result(frame.get("result"))
            return
        error = frame.get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        future.set_exception(
            TransportError(
                str(error.get("message") or "gateway request failed"),
                operation=str(frame.get("id")),
                status_code=error.get("statusCode"),
            )
        )

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()


def _fallback_close(frame: Dict[str, Any]) -> Optional[ConnectionUpdate]:
    """A close notice must never be lost, even when the rest of its payload is malformed."""

    data = frame.get("data")
    if frame.get("event") != "connection.update" or not isinstance(data, dict):
        return None
    if data.get("connection") != "close":
        return None
    return ConnectionUpdate(
        connection="close",
        last_disconnect=LastDisconnect(error="malformed close notice from gateway"),
    )
