"""Always-on chat session keeper with reconnection and background maintenance."""

__version__ = "0.1.0"
