"""Sentinel configuration loading and validation."""

from __future__ import annotations

import json
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal, Optional

import yaml
from pydantic import AnyUrl, Field, NonNegativeFloat, PositiveFloat, PositiveInt, ValidationError
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/sentinel/sentinel.yaml"),
    Path("/etc/sentinel/sentinel.yml"),
    Path("./config/sentinel.yaml"),
    Path("./config/sentinel.yml"),
)

_OWNER_NUMBER_RE = re.compile(r"^\d{10,15}$")


class ConfigurationError(ValueError):
    """Raised when a required setting is missing or malformed."""


class SentinelSettings(BaseSettings):
    """Validated settings for the sentinel runtime."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="SENTINEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Identity
    bot_name: str = Field(
        min_length=1,
        description="Display name used in status reporting.",
    )
    owner_number: str = Field(
        description="Owner phone number (digits only) receiving alerts.",
    )

    # Reconnection
    reconnect_delay_seconds: PositiveFloat = Field(
        default=5.0,
        description="Delay before a fresh session bootstrap after a recoverable failure.",
    )
    logged_out_status_code: int = Field(
        default=401,
        description="Disconnect status code that means the session was logged out.",
    )

    # Pairing
    pairing_delay_seconds: NonNegativeFloat = Field(
        default=10.0,
        description="Stabilization wait before requesting a pairing code.",
    )
    pairing_retry_delay_seconds: NonNegativeFloat = Field(
        default=3.0,
        description="Fixed backoff between pairing attempts.",
    )
    pairing_max_attempts: PositiveInt = Field(
        default=5,
        description="Pairing attempts allowed before the session is restarted.",
    )
    pairing_number: Optional[str] = Field(
        default=None,
        description="Phone number used for pairing instead of prompting on stdin.",
    )

    # Maintenance
    heartbeat_interval_seconds: PositiveFloat = Field(
        default=60.0,
        description="Presence availability ping frequency while connected.",
    )
    status_resubscribe_interval_seconds: PositiveFloat = Field(
        default=300.0,
        description="Status broadcast resubscription frequency while connected.",
    )

    # Dedup
    dedup_capacity: PositiveInt = Field(
        default=1000,
        description="Maximum number of status ids remembered at once.",
    )
    dedup_ttl_seconds: PositiveFloat = Field(
        default=3600.0,
        description="Lifetime of a remembered status id.",
    )

    # Behaviour flags
    auto_view_status: bool = Field(default=True, description="Mark status broadcasts as read.")
    auto_react_status: bool = Field(default=False, description="React to viewed status broadcasts.")
    status_reaction_emoji: Optional[str] = Field(default=None, description="Reaction sent when auto_react_status is on.")
    anti_delete: bool = Field(default=False, description="Alert the owner when a contact deletes a message.")
    anti_call: bool = Field(default=False, description="Reject incoming calls.")

    # Transport
    transport: Literal["dummy", "websocket"] = Field(
        default="websocket",
        description="Chat transport implementation to use.",
    )
    gateway_ws_url: AnyUrl = Field(
        default="ws://localhost:3000/gateway",
        description="Protocol gateway WebSocket endpoint.",
    )
    auth_dir: Path = Field(
        default=Path("./auth_session"),
        description="Directory where the gateway keeps session credentials.",
    )
    browser: list[str] = Field(
        default_factory=lambda: ["Ubuntu", "Chrome", "22.04.4"],
        description="Browser identity presented to the chat service.",
    )
    protocol_version: Optional[list[int]] = Field(
        default=None,
        description="Pinned protocol version; the gateway fetches the latest when unset.",
    )
    connect_timeout_seconds: PositiveFloat = Field(default=120.0)
    query_timeout_seconds: PositiveFloat = Field(default=60.0)
    keepalive_interval_seconds: PositiveFloat = Field(default=30.0)
    mark_online_on_connect: bool = Field(default=True)
    sync_full_history: bool = Field(default=False)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("owner_number", mode="before")
    @classmethod
    def _normalize_owner_number(cls, value: Any) -> Any:
        if isinstance(value, int):
            value = str(value)
        if isinstance(value, str):
            value = re.sub(r"[^0-9]", "", value)
            if not _OWNER_NUMBER_RE.match(value):
                raise ValueError("owner_number must contain 10-15 digits")
        return value

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @property
    def owner_jid(self) -> str:
        return f"{self.owner_number}@s.whatsapp.net"

    def ensure_configured(self) -> None:
        """Fail fast when required settings are absent or malformed."""

        missing = [
            key
            for key in ("bot_name", "owner_number", "reconnect_delay_seconds")
            if not getattr(self, key, None)
        ]
        if missing:
            raise ConfigurationError(f"Missing required config: {', '.join(missing)}")
        if not _OWNER_NUMBER_RE.match(str(self.owner_number)):
            raise ConfigurationError("Invalid owner number format")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[SentinelSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._yaml_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_settings_source(settings_cls: type[SentinelSettings] | None = None) -> Dict[str, Any]:
        candidates: Iterable[Path] = SentinelSettings._resolve_candidate_paths()

        for path in candidates:
            data = SentinelSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("SENTINEL_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        yield from DEFAULT_CONFIG_LOCATIONS

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file():
            return None
        suffix = path.suffix.lower()
        try:
            with path.open("r", encoding="utf-8") as handle:
                if suffix in {".yaml", ".yml"}:
                    raw = yaml.safe_load(handle)
                elif suffix == ".json":
                    raw = json.load(handle)
                else:
                    return None
        except OSError as exc:
            raise ConfigurationError(f"Failed to read sentinel config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Invalid sentinel config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Sentinel config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> SentinelSettings:
    """Return memoized sentinel settings."""

    try:
        settings = SentinelSettings()
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid sentinel configuration: {exc}") from exc
    settings.auth_dir = settings.auth_dir.expanduser().resolve()
    return settings
