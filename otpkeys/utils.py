"""
Base32 helpers for OTP secrets.
"""

import base64
import binascii
import re
from typing import Any, Iterable, Mapping


_B32_RE = re.compile(r"[A-Z2-7]+=*")


def normalize_secret(secret: str) -> str:
    """
    Normalise a base32 secret: strip spaces and dashes, uppercase, add padding.

    Args:
        secret: Raw secret string.

    Returns:
        Uppercase base32 string padded to a multiple of 8 characters.

    Raises:
        ValueError: If the string contains invalid base32 characters or
            padding that does not match its length.
    """
    if not isinstance(secret, str):
        raise ValueError("Secret must be a string.")
    secret = secret.strip().upper().replace(" ", "").replace("-", "")
    # Base32 alphabet: A-Z and 2-7
    if not _B32_RE.fullmatch(secret):
        raise ValueError("Secret contains invalid base32 characters.")
    body = secret.rstrip("=")
    pad = (8 - len(body) % 8) % 8
    # Missing padding is added; existing padding must already be exact
    if body != secret and len(secret) - len(body) != pad:
        raise ValueError("Secret has incorrect base32 padding.")
    return body + "=" * pad


def decode_secret(secret: str) -> bytes:
    """
    Decode a base32-encoded secret string to raw bytes.

    Args:
        secret: Base32 secret (spaces and dashes are stripped).

    Returns:
        Raw key bytes.

    Raises:
        ValueError: On invalid base32 input.
    """
    normalized = normalize_secret(secret)
    try:
        return base64.b32decode(normalized)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base32 secret: {exc}") from exc


def encode_secret(raw: bytes) -> str:
    """Encode raw bytes as a base32 string (with padding)."""
    return base64.b32encode(raw).decode("ascii")


# ── Field helpers ─────────────────────────────────────────────────────────────

def is_int(value: Any) -> bool:
    """Return True for ints, excluding bool."""
    return isinstance(value, int) and not isinstance(value, bool)


def check_fields(data: Mapping[str, Any], allowed: Iterable[str]) -> None:
    """
    Reject dict keys outside ``allowed``.

    Raises:
        ValueError: On unknown fields.
    """
    unknown = set(data) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown key fields: {', '.join(sorted(unknown))}")
