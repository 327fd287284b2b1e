"""Sentinel bootstrap entrypoint for settings/transport/supervisor wiring."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Type

from sentinel.config import SentinelSettings, get_settings
from sentinel.network import ConnectionSupervisor
from sentinel.transport import ChatTransport, DummyTransport, GatewayTransport

LOGGER = logging.getLogger(__name__)


def resolve_transport_class(settings: SentinelSettings) -> Type[ChatTransport]:
    return GatewayTransport if settings.transport == "websocket" else DummyTransport


def setup(settings: Optional[SentinelSettings] = None) -> ConnectionSupervisor:
    """Construct the supervisor without starting it."""

    settings = settings or get_settings()
    resolved_cls = resolve_transport_class(settings)
    LOGGER.debug("Initialising sentinel session via %s", resolved_cls.__name__)
    return ConnectionSupervisor(settings, transport_factory=lambda s: resolved_cls(s))


async def serve_forever(settings: Optional[SentinelSettings] = None) -> int:
    """Run the supervisor until it terminates; returns the process exit code."""

    supervisor = setup(settings)
    LOGGER.info("Starting %s...", supervisor.settings.bot_name)
    await supervisor.bootstrap()
    try:
        return await supervisor.wait_closed()
    except asyncio.CancelledError:
        LOGGER.info("Sentinel shutdown requested")
        await supervisor.shutdown()
        raise
