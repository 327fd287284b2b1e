"""Handlers for message and call events delivered by the transport."""

from .calls import CallHandler
from .messages import MessageHandler, format_delete_alert

__all__ = ["CallHandler", "MessageHandler", "format_delete_alert"]
