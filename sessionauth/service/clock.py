from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Protocol

ONE_DAY = timedelta(days=1)
VERIFICATION_CODE_TTL = timedelta(minutes=45)

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_DURATION_UNITS = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Timezone-aware UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def parse_duration(value: str) -> timedelta:
    """Parse compact durations such as ``45m``, ``12h`` or ``30d``.

    Raises:
        ValueError: If the string is not ``<int><s|m|h|d>``
    """
    if not isinstance(value, str):
        raise ValueError("duration must be a string")
    match = _DURATION_PATTERN.match(value.lower())
    if not match:
        raise ValueError(f"invalid duration '{value}'; expected e.g. 15m, 12h, 30d")
    amount, unit = match.groups()
    if int(amount) <= 0:
        raise ValueError("duration must be positive")
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def calculate_expiration(expires_in: str | timedelta, now: datetime) -> datetime:
    delta = expires_in if isinstance(expires_in, timedelta) else parse_duration(expires_in)
    return now + delta


def forty_five_minutes_from(now: datetime) -> datetime:
    return now + VERIFICATION_CODE_TTL
