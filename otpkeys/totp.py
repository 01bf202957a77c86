"""
TOTP (Time-based One-Time Password) implementation following RFC 6238.

A TOTP key is an HOTP key whose counter is the number of whole time steps
elapsed since ``t0``.
"""

import hmac
import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from otpkeys.errors import InvalidKeyError, Violation
from otpkeys.hotp import (
    DEFAULT_DIGITS,
    MAX_COUNTER,
    Algorithm,
    HOTPKey,
    algorithm_token,
    coerce_algorithm,
    generate_hotp,
)
from otpkeys.utils import check_fields, is_int

logger = logging.getLogger(__name__)

DEFAULT_TIME_STEP = 30          # seconds


def time_counter(timestamp: float, time_step: int = DEFAULT_TIME_STEP, t0: int = 0) -> int:
    """
    Return ``floor((timestamp - t0) / time_step)``.

    Args:
        timestamp: Unix time in seconds.
        time_step: Step length in seconds, 0 < time_step < 2**64.
        t0:        Epoch offset in seconds, 0 <= t0 < 2**64.

    Raises:
        InvalidKeyError: If the step or offset is invalid, or ``timestamp``
            is earlier than ``t0``.
    """
    errors: List[Violation] = []
    if not is_int(time_step) or not 0 < time_step <= MAX_COUNTER:
        errors.append(Violation.INVALID_TIME_STEP)
    if not is_int(t0) or not 0 <= t0 <= MAX_COUNTER:
        errors.append(Violation.INVALID_EPOCH)
    if errors:
        raise InvalidKeyError(errors)

    now = math.floor(timestamp)
    if now < t0:
        raise InvalidKeyError([Violation.EPOCH_IN_FUTURE])
    return (now - t0) // time_step


def remaining_seconds(
    period: int = DEFAULT_TIME_STEP,
    timestamp: Optional[float] = None,
    t0: int = 0,
) -> int:
    """
    Return seconds until the current TOTP window expires.

    Raises:
        InvalidKeyError: Under the same conditions as :func:`time_counter`.
    """
    t = timestamp if timestamp is not None else time.time()
    counter = time_counter(t, period, t0)
    return t0 + (counter + 1) * period - math.floor(t)


def generate_totp(
    secret_bytes: bytes,
    digits: int = DEFAULT_DIGITS,
    period: int = DEFAULT_TIME_STEP,
    algorithm: Algorithm = Algorithm.SHA1,
    timestamp: Optional[float] = None,
    t0: int = 0,
) -> str:
    """
    Generate a TOTP code from raw secret bytes.

    Args:
        secret_bytes: Raw (already base32-decoded) secret bytes.
        digits:       Number of digits in the OTP (default 6).
        period:       Time step in seconds (default 30).
        algorithm:    HMAC algorithm (default SHA1).
        timestamp:    Override Unix timestamp (uses time.time() if None).
        t0:           Epoch offset in seconds.

    Returns:
        OTP string, zero-padded to ``digits`` characters.
    """
    t = timestamp if timestamp is not None else time.time()
    counter = time_counter(t, period, t0)
    return generate_hotp(secret_bytes, counter, digits, algorithm)


@dataclass(frozen=True)
class TOTPKey:
    """
    A TOTP parameter set.

    ``clock`` returns the current Unix time and is only consulted when an
    operation is not given an explicit ``timestamp``. It takes no part in
    equality or serialization.
    """

    secret: str
    algorithm: Algorithm = Algorithm.SHA1
    digits: int = DEFAULT_DIGITS
    time_step: int = DEFAULT_TIME_STEP
    t0: int = 0
    clock: Callable[[], float] = field(default=time.time, compare=False, repr=False)

    def _now(self, timestamp: Optional[float]) -> float:
        return timestamp if timestamp is not None else self.clock()

    def to_hotp(self, timestamp: Optional[float] = None) -> HOTPKey:
        """
        Return the equivalent HOTP key for ``timestamp`` (or the clock).

        Raises:
            InvalidKeyError: If the time step or epoch offset is invalid.
        """
        counter = time_counter(self._now(timestamp), self.time_step, self.t0)
        return HOTPKey(self.secret, self.algorithm, self.digits, counter)

    # ── Validation ───────────────────────────────────────────────────────

    def validation_errors(self, timestamp: Optional[float] = None) -> List[Violation]:
        """Return every rule this key breaks at ``timestamp`` (or the clock)."""
        try:
            return self.to_hotp(timestamp).validation_errors()
        except InvalidKeyError as exc:
            base = HOTPKey(self.secret, self.algorithm, self.digits)
            return list(exc.violations) + base.validation_errors()

    def validate(self, timestamp: Optional[float] = None) -> bool:
        return not self.validation_errors(timestamp)

    # ── Derivation ───────────────────────────────────────────────────────

    def otp(self, timestamp: Optional[float] = None) -> str:
        """
        Derive the code for ``timestamp`` (or the clock).

        Raises:
            InvalidKeyError: If the key fails validation.
        """
        now = self._now(timestamp)
        errors = self.validation_errors(now)
        if errors:
            logger.warning(
                "Refusing TOTP derivation: %s", ", ".join(e.value for e in errors)
            )
            raise InvalidKeyError(errors)
        return self.to_hotp(now).otp()

    def verify(self, token: str, timestamp: Optional[float] = None) -> bool:
        """Compare ``token`` with the code of the current time step only."""
        expected = self.otp(timestamp)
        return hmac.compare_digest(token.strip().encode(), expected.encode())

    def remaining_seconds(self, timestamp: Optional[float] = None) -> int:
        """
        Seconds until the current step ends.

        Raises:
            InvalidKeyError: If the time step or epoch offset is invalid.
        """
        return remaining_seconds(self.time_step, self._now(timestamp), self.t0)

    # ── Serialization ────────────────────────────────────────────────────

    _FIELDS = ("secret_key", "hash_function", "digits", "time_step", "t0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "secret_key": self.secret,
            "hash_function": algorithm_token(self.algorithm),
            "digits": self.digits,
            "time_step": self.time_step,
            "t0": self.t0,
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        clock: Callable[[], float] = time.time,
    ) -> "TOTPKey":
        """
        Build a key from its dict form. Values are not validated.

        Raises:
            KeyError:   If ``secret_key`` is missing.
            ValueError: On unknown fields.
        """
        check_fields(data, cls._FIELDS)
        algorithm = data.get("hash_function", Algorithm.SHA1)
        return cls(
            secret=data["secret_key"],
            algorithm=coerce_algorithm(algorithm) or algorithm,
            digits=data.get("digits", DEFAULT_DIGITS),
            time_step=data.get("time_step", DEFAULT_TIME_STEP),
            t0=data.get("t0", 0),
            clock=clock,
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str, clock: Callable[[], float] = time.time) -> "TOTPKey":
        return cls.from_dict(json.loads(text), clock=clock)
