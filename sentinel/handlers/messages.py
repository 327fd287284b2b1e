"""Handling of upserted chat messages (status views and deletion alerts)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sentinel.config import SentinelSettings
from sentinel.dedup import DedupCache
from sentinel.models import STATUS_BROADCAST_JID, ChatMessage, MessagesUpsert, jid_user
from sentinel.transport import ChatTransport

LOGGER = logging.getLogger(__name__)


def format_delete_alert(deleter_jid: str, when: datetime) -> str:
    return (
        "*Anti-Delete Alert*\n\n"
        f"User: @{jid_user(deleter_jid)}\n"
        "Deleted a message\n"
        f"Time: {when:%Y-%m-%d %H:%M:%S}"
    )


@dataclass
class MessageHandler:
    settings: SentinelSettings
    viewed_status: DedupCache

    async def handle(self, transport: ChatTransport, update: MessagesUpsert) -> None:
        for message in update.messages:
            if not message.message:
                continue
            try:
                if message.is_status_broadcast and self.settings.auto_view_status:
                    await self.view_status(transport, message)
                if self.settings.anti_delete:
                    await self.report_deletion(transport, message)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Message handler failed for id=%s", message.key.id)

    async def view_status(self, transport: ChatTransport, message: ChatMessage) -> None:
        status_id = message.key.id
        if not status_id or not self.viewed_status.observe_once(status_id):
            return
        sender = message.key.participant
        if not sender:
            return
        try:
            await transport.read_messages([message.key])
            LOGGER.info("Viewed status: %s", jid_user(sender))
            if self.settings.auto_react_status and self.settings.status_reaction_emoji:
                await transport.send_message(
                    STATUS_BROADCAST_JID,
                    {"react": {"text": self.settings.status_reaction_emoji, "key": message.key.to_wire()}},
                    {"statusJidList": [sender]},
                )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Status view error (%s): %s", status_id, exc)

    async def report_deletion(self, transport: ChatTransport, message: ChatMessage) -> None:
        deleted = message.revoked_key()
        if deleted is None:
            return
        deleted_jid = deleted.remote_jid
        if not deleted_jid or deleted_jid == STATUS_BROADCAST_JID:
            return
        try:
            await transport.send_message(
                self.settings.owner_jid,
                {"text": format_delete_alert(deleted_jid, datetime.now()), "mentions": [deleted_jid]},
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Anti-delete error: %s", exc)
            return
        LOGGER.info("Anti-delete: %s deleted a message", jid_user(deleted_jid))
