"""
Error taxonomy for OTP key parameter sets.
"""

from enum import Enum
from typing import Iterable, Tuple


class Violation(str, Enum):
    """A single rule broken by an HOTP/TOTP parameter set."""

    INVALID_SECRET_ENCODING = "INVALID_SECRET_ENCODING"
    KEY_TOO_SHORT = "KEY_TOO_SHORT"
    UNSUPPORTED_HASH = "UNSUPPORTED_HASH"
    DIGIT_COUNT_OUT_OF_RANGE = "DIGIT_COUNT_OUT_OF_RANGE"
    COUNTER_OUT_OF_RANGE = "COUNTER_OUT_OF_RANGE"
    # TOTP only
    INVALID_TIME_STEP = "INVALID_TIME_STEP"
    INVALID_EPOCH = "INVALID_EPOCH"
    EPOCH_IN_FUTURE = "EPOCH_IN_FUTURE"


class InvalidKeyError(ValueError):
    """Raised when a code is requested from an invalid parameter set."""

    def __init__(self, violations: Iterable[Violation]) -> None:
        self.violations: Tuple[Violation, ...] = tuple(violations)
        names = ", ".join(v.value for v in self.violations) or "unknown"
        super().__init__(f"Invalid key parameters: {names}")
