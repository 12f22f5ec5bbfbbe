"""Verification tokens published in the _<platform>-verification TXT record.

Format: ``verify-<base36 random>-<base36 unix milliseconds>``.
"""

from __future__ import annotations

import re
import secrets
import time

TOKEN_PREFIX = "verify"
TOKEN_PATTERN = re.compile(r"^verify-[a-z0-9]+-[a-z0-9]+$")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base36."""
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_verification_token(now: float | None = None) -> str:
    """Generate a new verification token.

    Args:
        now: Unix timestamp in seconds to embed; defaults to the current time.
    """
    random_part = "".join(secrets.choice(_BASE36) for _ in range(8))
    timestamp = int((time.time() if now is None else now) * 1000)
    return f"{TOKEN_PREFIX}-{random_part}-{to_base36(timestamp)}"


def is_valid_verification_token(token: str | None) -> bool:
    """Check that ``token`` has the verification token format."""
    if not token:
        return False
    return TOKEN_PATTERN.match(token) is not None
