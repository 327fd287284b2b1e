from datetime import datetime

import pytest

from sentinel.dedup import DedupCache
from sentinel.handlers import CallHandler, MessageHandler, format_delete_alert
from sentinel.models import STATUS_BROADCAST_JID, CallEvent, ChatMessage, MessageKey, MessagesUpsert, parse_event
from sentinel.transport import DummyTransport, TransportError

SENDER = "254711111111@s.whatsapp.net"


def _status(status_id: str, participant: str | None = SENDER) -> ChatMessage:
    return ChatMessage(
        key=MessageKey(remote_jid=STATUS_BROADCAST_JID, id=status_id, participant=participant),
        message={"conversation": "hello"},
    )


def _revoke(remote_jid: str) -> ChatMessage:
    return ChatMessage.model_validate(
        {
            "key": {"remoteJid": remote_jid, "id": "NOTICE-1", "fromMe": False},
            "message": {
                "protocolMessage": {
                    "type": 0,
                    "key": {"remoteJid": remote_jid, "id": "ORIGINAL-1", "fromMe": False},
                }
            },
        }
    )


@pytest.mark.asyncio
async def test_duplicate_status_is_read_once(settings, clock):
    transport = DummyTransport(settings)
    handler = MessageHandler(settings, DedupCache(10, 3600, clock=clock))

    await handler.handle(transport, MessagesUpsert(messages=[_status("S1"), _status("S1")]))
    await handler.handle(transport, MessagesUpsert(messages=[_status("S1")]))

    reads = transport.calls_for("read_messages")
    assert len(reads) == 1
    assert reads[0][0][0].id == "S1"
    assert transport.calls_for("send_message") == []


@pytest.mark.asyncio
async def test_status_reaction_targets_sender(make_settings, clock):
    settings = make_settings(auto_react_status=True, status_reaction_emoji="🔥")
    transport = DummyTransport(settings)
    handler = MessageHandler(settings, DedupCache(10, 3600, clock=clock))

    await handler.handle(transport, MessagesUpsert(messages=[_status("S2")]))

    assert transport.calls_for("send_message") == [
        (
            STATUS_BROADCAST_JID,
            {"react": {"text": "🔥", "key": {"remoteJid": STATUS_BROADCAST_JID, "id": "S2", "participant": SENDER, "fromMe": False}}},
            {"statusJidList": [SENDER]},
        )
    ]


@pytest.mark.asyncio
async def test_status_without_participant_is_skipped(settings, clock):
    transport = DummyTransport(settings)
    handler = MessageHandler(settings, DedupCache(10, 3600, clock=clock))

    await handler.handle(transport, MessagesUpsert(messages=[_status("S3", participant=None)]))

    assert transport.calls_for("read_messages") == []


@pytest.mark.asyncio
async def test_status_read_failure_is_contained(settings, clock):
    transport = DummyTransport(settings)
    transport.failures["read_messages"] = [TransportError("timed out"), None]
    handler = MessageHandler(settings, DedupCache(10, 3600, clock=clock))

    await handler.handle(transport, MessagesUpsert(messages=[_status("S4"), _status("S5")]))

    assert [args[0][0].id for args in transport.calls_for("read_messages")] == ["S4", "S5"]


@pytest.mark.asyncio
async def test_status_viewing_disabled(make_settings, clock):
    settings = make_settings(auto_view_status=False)
    transport = DummyTransport(settings)
    handler = MessageHandler(settings, DedupCache(10, 3600, clock=clock))

    await handler.handle(transport, MessagesUpsert(messages=[_status("S6")]))

    assert transport.calls == []


@pytest.mark.asyncio
async def test_anti_delete_alerts_owner(make_settings, clock):
    settings = make_settings(anti_delete=True)
    transport = DummyTransport(settings)
    handler = MessageHandler(settings, DedupCache(10, 3600, clock=clock))
    deleter = "254722222222@s.whatsapp.net"

    await handler.handle(transport, MessagesUpsert(messages=[_revoke(deleter)]))

    [(jid, payload, options)] = transport.calls_for("send_message")
    assert jid == "254700000001@s.whatsapp.net"
    assert payload["mentions"] == [deleter]
    assert "@254722222222" in payload["text"]
    assert options is None


@pytest.mark.asyncio
async def test_anti_delete_ignores_status_revokes(make_settings, clock):
    settings = make_settings(anti_delete=True)
    transport = DummyTransport(settings)
    handler = MessageHandler(settings, DedupCache(10, 3600, clock=clock))

    await handler.handle(transport, MessagesUpsert(messages=[_revoke(STATUS_BROADCAST_JID)]))

    assert transport.calls_for("send_message") == []


def test_delete_alert_format():
    text = format_delete_alert("254722222222@s.whatsapp.net", datetime(2024, 5, 1, 13, 45, 10))

    assert text.startswith("*Anti-Delete Alert*")
    assert "User: @254722222222" in text
    assert "Time: 2024-05-01 13:45:10" in text


@pytest.mark.asyncio
async def test_call_handler_rejects_offers_and_continues_after_failure(make_settings):
    settings = make_settings(anti_call=True)
    transport = DummyTransport(settings)
    transport.failures["reject_call"] = [TransportError("gone"), None]
    event = parse_event(
        "call",
        [
            {"id": "C1", "from": "254733333333@s.whatsapp.net", "status": "offer"},
            {"id": "C2", "from": "254744444444@s.whatsapp.net", "status": "offer"},
            {"id": "C3", "from": "254755555555@s.whatsapp.net", "status": "terminate"},
        ],
    )
    assert isinstance(event, CallEvent)

    await CallHandler(settings).handle(transport, event)

    assert transport.calls_for("reject_call") == [
        ("C1", "254733333333@s.whatsapp.net"),
        ("C2", "254744444444@s.whatsapp.net"),
    ]


@pytest.mark.asyncio
async def test_call_handler_disabled(settings):
    transport = DummyTransport(settings)
    event = CallEvent.model_validate({"calls": [{"id": "C1", "from": SENDER}]})

    await CallHandler(settings).handle(transport, event)

    assert transport.calls == []
