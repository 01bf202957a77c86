"""
HOTP (HMAC-based One-Time Password) implementation following RFC 4226.
"""

import hmac
import json
import logging
import struct
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.hmac import HMAC

from otpkeys.errors import InvalidKeyError, Violation
from otpkeys.utils import check_fields, decode_secret, is_int

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

MIN_KEY_SIZE = 16               # bytes; stricter than the RFC 4226 minimum
MAX_DIGITS = 10
MAX_COUNTER = 2**64 - 1         # counter is an unsigned 64-bit value
DEFAULT_DIGITS = 6


class Algorithm(str, Enum):
    """Supported HMAC algorithms."""

    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"


# Read-only after import.
_HASHES: Mapping[Algorithm, type] = MappingProxyType({
    Algorithm.SHA1: hashes.SHA1,
    Algorithm.SHA256: hashes.SHA256,
    Algorithm.SHA512: hashes.SHA512,
})


def coerce_algorithm(value: Any) -> Optional[Algorithm]:
    """Return the :class:`Algorithm` for ``value`` or None if unsupported."""
    try:
        return Algorithm(value)
    except ValueError:
        return None


def algorithm_token(value: Any) -> Any:
    """Return the string token for ``value``, leaving unknown values as-is."""
    return value.value if isinstance(value, Algorithm) else value


# ── Core computation ─────────────────────────────────────────────────────────

def generate_hotp(
    secret_bytes: bytes,
    counter: int,
    digits: int = DEFAULT_DIGITS,
    algorithm: Algorithm = Algorithm.SHA1,
) -> str:
    """
    Generate an HOTP code (RFC 4226 §5.3).

    No parameter checks are made here beyond what packing the counter
    enforces; use :class:`HOTPKey` for validated derivation.

    Args:
        secret_bytes: Raw decoded secret bytes.
        counter:      Moving factor, 0 <= counter < 2**64.
        digits:       Number of OTP digits.
        algorithm:    HMAC algorithm.

    Returns:
        OTP string, zero-padded to ``digits`` characters.
    """
    msg = struct.pack(">Q", counter)
    mac = HMAC(secret_bytes, _HASHES[Algorithm(algorithm)]())
    mac.update(msg)
    digest = mac.finalize()

    # Dynamic truncation
    offset = digest[-1] & 0x0F
    code = (
        (digest[offset] & 0x7F) << 24
        | (digest[offset + 1] & 0xFF) << 16
        | (digest[offset + 2] & 0xFF) << 8
        | (digest[offset + 3] & 0xFF)
    )
    otp = code % (10**digits)
    return str(otp).zfill(digits)


# ── Parameter set ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class HOTPKey:
    """
    An HOTP parameter set.

    ``secret`` is base32 text; ``algorithm`` may be an :class:`Algorithm`
    or its string token. Instances are immutable and compare by value, so
    equal keys always produce equal codes.
    """

    secret: str
    algorithm: Algorithm = Algorithm.SHA1
    digits: int = DEFAULT_DIGITS
    counter: int = 0

    # ── Validation ───────────────────────────────────────────────────────

    def validation_errors(self) -> List[Violation]:
        """Return every rule this key breaks, in check order."""
        errors: List[Violation] = []
        try:
            key = decode_secret(self.secret)
        except ValueError:
            errors.append(Violation.INVALID_SECRET_ENCODING)
        else:
            if len(key) < MIN_KEY_SIZE:
                errors.append(Violation.KEY_TOO_SHORT)
        if coerce_algorithm(self.algorithm) is None:
            errors.append(Violation.UNSUPPORTED_HASH)
        if not is_int(self.digits) or not 0 < self.digits <= MAX_DIGITS:
            errors.append(Violation.DIGIT_COUNT_OUT_OF_RANGE)
        if not is_int(self.counter) or not 0 <= self.counter <= MAX_COUNTER:
            errors.append(Violation.COUNTER_OUT_OF_RANGE)
        return errors

    def validate(self) -> bool:
        """Return True if a code can be derived from this key."""
        return not self.validation_errors()

    # ── Derivation ───────────────────────────────────────────────────────

    def otp(self) -> str:
        """
        Derive the code for the current counter.

        The counter is never advanced; call :meth:`at` for the next one.

        Raises:
            InvalidKeyError: If the key fails validation.
        """
        errors = self.validation_errors()
        if errors:
            logger.warning(
                "Refusing HOTP derivation: %s", ", ".join(e.value for e in errors)
            )
            raise InvalidKeyError(errors)
        return generate_hotp(
            decode_secret(self.secret),
            self.counter,
            self.digits,
            Algorithm(self.algorithm),
        )

    def verify(self, token: str) -> bool:
        """Compare ``token`` with :meth:`otp` in constant time."""
        expected = self.otp()
        return hmac.compare_digest(token.strip().encode(), expected.encode())

    def at(self, counter: int) -> "HOTPKey":
        """Return a copy of this key using ``counter``."""
        return replace(self, counter=counter)

    # ── Serialization ────────────────────────────────────────────────────

    _FIELDS = ("secret_key", "hash_function", "digits", "counter")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "secret_key": self.secret,
            "hash_function": algorithm_token(self.algorithm),
            "digits": self.digits,
            "counter": self.counter,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HOTPKey":
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
            counter=data.get("counter", 0),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> "HOTPKey":
        return cls.from_dict(json.loads(text))
