"""Pairing-code flow for sessions that are not yet linked to a phone."""

from __future__ import annotations

import asyncio
import logging
import re
import sys
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TextIO, Union

from sentinel.config import SentinelSettings
from sentinel.transport import ChatTransport
from sentinel.runtime.timers import Clock, LoopClock

LOGGER = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

NumberProvider = Callable[[], Awaitable[str]]
CodeDisplay = Callable[[str], None]


class NumberValidationError(ValueError):
    """Raised when the pairing phone number is malformed."""


class PairingExhausted(RuntimeError):
    """Raised when every pairing attempt allowed for a session has failed."""


@dataclass(frozen=True)
class PairingSuccess:
    code: str


@dataclass(frozen=True)
class PairingRetry:
    error: Exception


@dataclass(frozen=True)
class PairingExhaustedOutcome:
    error: Exception


PairingOutcome = Union[PairingSuccess, PairingRetry, PairingExhaustedOutcome]


def normalize_phone_number(raw: str) -> str:
    return re.sub(r"[^0-9]", "", raw or "")


def validate_phone_number(raw: str) -> str:
    """Return the digits of ``raw`` or raise ``NumberValidationError``."""

    digits = normalize_phone_number(raw)
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        raise NumberValidationError(
            f"Invalid phone number. Must be {MIN_PHONE_DIGITS}-{MAX_PHONE_DIGITS} digits."
        )
    return digits


PHONE_PROMPT = "Enter your WhatsApp number (e.g., 254...): "


class StdinLinePrompt:
    """Reads answers from one long-lived stdin thread.

    Lines land in an asyncio queue, so a prompt cancelled mid-wait leaves the
    next line typed for whichever prompt asks next.
    """

    def __init__(self, prompt: str = PHONE_PROMPT, *, stream: Optional[TextIO] = None) -> None:
        self.prompt = prompt
        self._stream = stream
        self._lines: Optional[asyncio.Queue[Optional[str]]] = None
        self._reader: Optional[threading.Thread] = None

    async def __call__(self) -> str:
        lines = self._ensure_reader(asyncio.get_running_loop())
        print(self.prompt, end="", flush=True)
        line = await lines.get()
        if line is None:
            lines.put_nowait(None)
            raise EOFError("stdin closed before a phone number was entered")
        return line

    def _ensure_reader(self, loop: asyncio.AbstractEventLoop) -> asyncio.Queue[Optional[str]]:
        if self._lines is None:
            self._lines = asyncio.Queue()
            self._reader = threading.Thread(
                target=self._read_forever,
                args=(loop, self._lines),
                name="pairing-stdin",
                daemon=True,
            )
            self._reader.start()
        return self._lines

    def _read_forever(self, loop: asyncio.AbstractEventLoop, lines: asyncio.Queue[Optional[str]]) -> None:
        stream = self._stream or sys.stdin
        for raw in stream:
            if not self._hand_over(loop, lines, raw.rstrip("\r\n")):
                return
        self._hand_over(loop, lines, None)

    @staticmethod
    def _hand_over(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue[Optional[str]], line: Optional[str]) -> bool:
        try:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        except RuntimeError:
            LOGGER.debug("Event loop closed; stopping stdin reader")
            return False
        return True


def print_pairing_code(code: str) -> None:
    print(f"\nPAIR USING THIS CODE: \x1b[32m{code}\x1b[0m\n", flush=True)


class PairingCoordinator:
    """Requests a pairing code with a fixed stabilization wait and bounded retries."""

    def __init__(
        self,
        settings: SentinelSettings,
        *,
        clock: Optional[Clock] = None,
        number_provider: Optional[NumberProvider] = None,
        display: Optional[CodeDisplay] = None,
    ) -> None:
        self.max_attempts = int(settings.pairing_max_attempts)
        self.stabilization_delay = float(settings.pairing_delay_seconds)
        self.retry_delay = float(settings.pairing_retry_delay_seconds)
        self._configured_number = settings.pairing_number
        self._clock: Clock = clock or LoopClock()
        self._number_provider = number_provider or StdinLinePrompt()
        self._display = display or print_pairing_code
        self.attempts = 0

    def reset(self) -> None:
        self.attempts = 0

    async def run(self, transport: ChatTransport) -> str:
        """Drive attempts until a code is obtained or the attempt bound is hit.

        Each run is a fresh attempt sequence; the counter starts at zero.
        """

        self.reset()
        LOGGER.info("Stabilizing connection for %.0fs before pairing", self.stabilization_delay)
        await self._clock.sleep(self.stabilization_delay)
        while True:
            outcome = await self.attempt(transport)
            if isinstance(outcome, PairingSuccess):
                return outcome.code
            if isinstance(outcome, PairingExhaustedOutcome):
                raise PairingExhausted(
                    f"Max pairing attempts reached ({self.max_attempts}): {outcome.error}"
                ) from outcome.error
            LOGGER.info("Retrying pairing (%s/%s)", self.attempts, self.max_attempts)
            # the transport stays up between attempts; only the first one waits for stabilization
            await self._clock.sleep(self.retry_delay)

    async def attempt(self, transport: ChatTransport) -> PairingOutcome:
        """Prompt for a number and request one code."""

        try:
            number = validate_phone_number(await self._next_number())
            code = await transport.request_pairing_code(number)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.attempts += 1
            LOGGER.warning("Pairing error: %s", exc)
            if self.attempts >= self.max_attempts:
                return PairingExhaustedOutcome(exc)
            return PairingRetry(exc)
        self._display(code)
        self.attempts = 0
        return PairingSuccess(code)

    async def _next_number(self) -> str:
        if self._configured_number:
            return self._configured_number
        return await self._number_provider()
