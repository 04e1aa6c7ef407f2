"""Normalization of channel addresses (phone numbers, email addresses)."""

from __future__ import annotations

import re

from herald.core.types import ChannelType

_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")
_PHONE_NOISE = re.compile(r"[\s\-\(\)\.]")


def normalize_phone(value: str | None) -> str | None:
    """Return the number in ``+<digits>`` form, or None if it is not a phone number.

    At least 10 digits are required; a ``whatsapp:`` prefix is tolerated.
    """
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    if value.lower().startswith("whatsapp:"):
        value = value[len("whatsapp:"):]
    digits = _PHONE_NOISE.sub("", value)
    if digits.startswith("+"):
        digits = digits[1:]
    elif digits.startswith("00"):
        digits = digits[2:]
    if not digits.isdigit() or not 10 <= len(digits) <= 15:
        return None
    return f"+{digits}"


def normalize_email(value: str | None) -> str | None:
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    if not _EMAIL_PATTERN.fullmatch(value):
        return None
    return value


def normalize_address(channel: ChannelType, value: str | None) -> str | None:
    """Normalize *value* for *channel*; None means unusable."""
    if channel == ChannelType.EMAIL:
        return normalize_email(value)
    return normalize_phone(value)
