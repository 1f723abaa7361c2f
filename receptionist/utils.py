"""Shared utilities for phone numbers, dates and times."""

import re
from datetime import date, time
from typing import Optional

MIN_PHONE_DIGITS = 10

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("555 123 4567")
        '5551234567'
        >>> normalize_phone("+1 (555) 123-4567")
        '+15551234567'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def phone_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def is_valid_phone(value: Optional[str]) -> bool:
    """A phone number is usable only once it carries at least ten digits."""
    return len(phone_digits(value)) >= MIN_PHONE_DIGITS


def format_phone_readback(value: str) -> str:
    """Format the last ten digits of a number for reading back to a caller.

    Examples:
        >>> format_phone_readback("5551234567")
        '(555) 123-4567'
        >>> format_phone_readback("+1 555 123 4567")
        '(555) 123-4567'
    """
    digits = phone_digits(value)
    if len(digits) < MIN_PHONE_DIGITS:
        return value
    digits = digits[-MIN_PHONE_DIGITS:]
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"


def normalize_date(value: Optional[str]) -> Optional[str]:
    """Return ``value`` if it is a valid YYYY-MM-DD date, else None."""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError:
        return None


def normalize_time(value: Optional[str]) -> Optional[str]:
    """Coerce ``H:MM`` / ``HH:MM`` / ``HH:MM:SS`` into ``HH:MM:SS``.

    Returns None for anything that is not a valid 24-hour clock time.
    """
    if not value:
        return None
    match = _TIME_PATTERN.match(value.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3) or 0)
    if hour > 23 or minute > 59 or second > 59:
        return None
    return f"{hour:02d}:{minute:02d}:{second:02d}"


def parse_time(value: str) -> time:
    normalized = normalize_time(value)
    if normalized is None:
        raise ValueError(f"Invalid time: {value!r}")
    return time.fromisoformat(normalized)


def format_time(value: str) -> str:
    """Render a 24-hour clock time the way it is spoken.

    Examples:
        >>> format_time("17:30:00")
        '5:30 PM'
        >>> format_time("00:15")
        '12:15 AM'
    """
    parsed = parse_time(value)
    hour12 = parsed.hour % 12 or 12
    period = "AM" if parsed.hour < 12 else "PM"
    return f"{hour12}:{parsed.minute:02d} {period}"


def format_date(value: str) -> str:
    """Render an ISO date as e.g. ``Monday, June 2, 2025``."""
    parsed = date.fromisoformat(value)
    return f"{parsed.strftime('%A, %B')} {parsed.day}, {parsed.year}"


def minutes_of_day(value: str) -> int:
    parsed = parse_time(value)
    return parsed.hour * 60 + parsed.minute


def time_from_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}:00"
