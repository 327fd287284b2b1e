from .coordinator import (
    NumberValidationError,
    PairingCoordinator,
    PairingExhausted,
    PairingExhaustedOutcome,
    PairingOutcome,
    PairingRetry,
    PairingSuccess,
    StdinLinePrompt,
    normalize_phone_number,
    validate_phone_number,
)

__all__ = [
    "NumberValidationError",
    "PairingCoordinator",
    "PairingExhausted",
    "PairingExhaustedOutcome",
    "PairingOutcome",
    "PairingRetry",
    "PairingSuccess",
    "StdinLinePrompt",
    "normalize_phone_number",
    "validate_phone_number",
]
