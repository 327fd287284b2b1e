"""Automatic rejection of incoming calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sentinel.config import SentinelSettings
from sentinel.models import CallEvent, jid_user
from sentinel.transport import ChatTransport

LOGGER = logging.getLogger(__name__)


@dataclass
class CallHandler:
    settings: SentinelSettings

    async def handle(self, transport: ChatTransport, event: CallEvent) -> None:
        if not self.settings.anti_call:
            return
        for call in event.calls:
            if call.status not in (None, "offer"):
                continue
            try:
                await transport.reject_call(call.id, call.from_)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Call rejection error for %s: %s", call.id, exc)
                continue
            LOGGER.info("Rejected call from: %s", jid_user(call.from_))
