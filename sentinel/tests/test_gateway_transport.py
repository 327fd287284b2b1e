import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import pytest

from sentinel.models import CallEvent, ConnectionUpdate, MessageKey
from sentinel.transport import GatewayTransport, TransportError

Responder = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


def _default_responder(request: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if request["op"] == "init":
        return {"id": request["id"], "ok": True, "result": {"registered": True}}
    return {"id": request["id"], "ok": True, "result": None}


class FakeGatewaySocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self, responder: Responder = _default_responder) -> None:
        self.responder = responder
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[Optional[str]] = asyncio.Queue()

    def feed(self, frame: Any) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    async def send(self, data: str) -> None:
        request = json.loads(data)
        self.sent.append(request)
        response = self.responder(request)
        if response is not None:
            self.feed(response)

    async def close(self) -> None:
        self.closed = True
        self.hang_up()

    def __aiter__(self) -> "FakeGatewaySocket":
        return self

    async def __anext__(self) -> str:
        frame = await self._incoming.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


def _connector(socket: FakeGatewaySocket):
    async def _connect(url: str) -> FakeGatewaySocket:
        return socket

    return _connect


@pytest.mark.asyncio
async def test_connect_sends_init_and_reads_registration(make_settings):
    settings = make_settings(transport="websocket", connect_timeout_seconds=30)
    socket = FakeGatewaySocket()
    transport = GatewayTransport(settings, connector=_connector(socket))

    await transport.connect()

    assert transport.is_registered
    init = socket.sent[0]
    assert init["op"] == "init"
    assert init["args"]["connectTimeoutMs"] == 30000
    assert init["args"]["printQRInTerminal"] is False
    assert init["args"]["browser"] == ["Ubuntu", "Chrome", "22.04.4"]
    await transport.close()


@pytest.mark.asyncio
async def test_requests_are_correlated_by_id(settings):
    def responder(request):
        if request["op"] == "init":
            return {"id": request["id"], "ok": True, "result": {"registered": False}}
        if request["op"] == "requestPairingCode":
            return {"id": request["id"], "ok": True, "result": {"code": "QWER-TYUI"}}
        return {"id": request["id"], "ok": True, "result": None}

    socket = FakeGatewaySocket(responder)
    transport = GatewayTransport(settings, connector=_connector(socket))
    await transport.connect()

    assert not transport.is_registered
    assert await transport.request_pairing_code("254700000002") == "QWER-TYUI"
    await transport.read_messages([MessageKey(remote_jid="status@broadcast", id="S1", participant="p@s.whatsapp.net")])

    ops = [(request["op"], request["args"]) for request in socket.sent[1:]]
    assert ops == [
        ("requestPairingCode", {"phoneNumber": "254700000002"}),
        (
            "readMessages",
            {"keys": [{"remoteJid": "status@broadcast", "id": "S1", "participant": "p@s.whatsapp.net", "fromMe": False}]},
        ),
    ]
    assert len({request["id"] for request in socket.sent}) == len(socket.sent)
    await transport.close()


@pytest.mark.asyncio
async def test_error_response_raises_transport_error(settings):
    def responder(request):
        if request["op"] == "init":
            return {"id": request["id"], "ok": True, "result": {"registered": True}}
        return {"id": request["id"], "ok": False, "error": {"message": "Connection Closed", "statusCode": 428}}

    socket = FakeGatewaySocket(responder)
    transport = GatewayTransport(settings, connector=_connector(socket))
    await transport.connect()

    with pytest.raises(TransportError) as excinfo:
        await transport.send_presence_update("available")

    assert excinfo.value.status_code == 428
    assert "Connection Closed" in str(excinfo.value)
    await transport.close()


@pytest.mark.asyncio
async def test_events_are_parsed_and_junk_is_dropped(settings):
    socket = FakeGatewaySocket()
    transport = GatewayTransport(settings, connector=_connector(socket))
    await transport.connect()

    socket.feed("not json at all")
    socket.feed({"event": "presence.update", "data": {"id": "x"}})
    socket.feed({"event": "connection.update", "data": {"connection": "bogus"}})
    socket.feed({"event": "creds.update", "data": [1, 2]})
    socket.feed({"event": "messages.upsert", "data": "garbage"})
    socket.feed({"event": ["connection.update"], "data": {}})
    socket.feed({"event": "connection.update", "data": {"connection": "open"}})
    socket.feed({"event": "call", "data": [{"id": "C1", "from": "254733333333@s.whatsapp.net", "status": "offer"}]})

    opened = await asyncio.wait_for(transport.receive(), timeout=1)
    call = await asyncio.wait_for(transport.receive(), timeout=1)

    assert isinstance(opened, ConnectionUpdate)
    assert opened.connection == "open"
    assert isinstance(call, CallEvent)
    assert call.calls[0].from_ == "254733333333@s.whatsapp.net"
    await transport.close()


@pytest.mark.asyncio
async def test_socket_loss_surfaces_as_close_event(settings):
    socket = FakeGatewaySocket()
    transport = GatewayTransport(settings, connector=_connector(socket))
    await transport.connect()

    socket.hang_up()
    event = await asyncio.wait_for(transport.receive(), timeout=1)

    assert isinstance(event, ConnectionUpdate)
    assert event.connection == "close"
    assert event.last_disconnect is not None
    assert event.last_disconnect.status_code is None
    await transport.close()


@pytest.mark.asyncio
async def test_close_does_not_emit_close_event(settings):
    socket = FakeGatewaySocket()
    transport = GatewayTransport(settings, connector=_connector(socket))
    await transport.connect()

    await transport.close()

    assert socket.closed
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(transport.receive(), timeout=0.05)
    with pytest.raises(TransportError):
        await transport.send_presence_update("available")


@pytest.mark.asyncio
async def test_connect_failure_is_wrapped(settings):
    async def refuse(url: str):
        raise ConnectionRefusedError("connection refused")

    transport = GatewayTransport(settings, connector=refuse)

    with pytest.raises(TransportError) as excinfo:
        await transport.connect()

    assert excinfo.value.operation == "connect"


@pytest.mark.asyncio
async def test_close_with_error_object_is_delivered(settings):
    socket = FakeGatewaySocket()
    transport = GatewayTransport(settings, connector=_connector(socket))
    await transport.connect()

    socket.feed(
        {
            "event": "connection.update",
            "data": {
                "connection": "close",
                "lastDisconnect": {"error": {"message": "Stream Errored", "data": None}, "statusCode": 515},
            },
        }
    )
    event = await asyncio.wait_for(transport.receive(), timeout=1)

    assert isinstance(event, ConnectionUpdate)
    assert event.connection == "close"
    assert event.last_disconnect.error == "Stream Errored"
    assert event.last_disconnect.status_code == 515
    await transport.close()


@pytest.mark.asyncio
async def test_malformed_close_still_surfaces_as_recoverable_close(settings):
    socket = FakeGatewaySocket()
    transport = GatewayTransport(settings, connector=_connector(socket))
    await transport.connect()

    socket.feed(
        {
            "event": "connection.update",
            "data": {"connection": "close", "lastDisconnect": {"statusCode": "not-a-code"}},
        }
    )
    event = await asyncio.wait_for(transport.receive(), timeout=1)

    assert isinstance(event, ConnectionUpdate)
    assert event.connection == "close"
    assert event.last_disconnect.status_code is None
    assert event.last_disconnect.error
    await transport.close()


@pytest.mark.asyncio
async def test_string_error_response_raises_transport_error(settings):
    def responder(request):
        if request["op"] == "init":
            return {"id": request["id"], "ok": True, "result": {"registered": True}}
        return {"id": request["id"], "ok": False, "error": "not authorized"}

    socket = FakeGatewaySocket(responder)
    transport = GatewayTransport(settings, connector=_connector(socket))
    await transport.connect()

    with pytest.raises(TransportError) as excinfo:
        await transport.send_presence_update("available")

    assert "not authorized" in str(excinfo.value)
    assert excinfo.value.status_code is None
    assert transport.is_registered
    socket.feed({"event": "connection.update", "data": {"connection": "open"}})
    opened = await asyncio.wait_for(transport.receive(), timeout=1)
    assert opened.connection == "open"
    await transport.close()
