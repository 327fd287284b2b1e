"""Sentinel configuration."""

from .settings import ConfigurationError, SentinelSettings, get_settings

__all__ = ["ConfigurationError", "SentinelSettings", "get_settings"]
