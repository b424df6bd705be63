"""Time helpers shared by the lifecycle code."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from dateutil.parser import isoparse

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from backends without timezone support."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp as sent by the payment provider."""

    if not value:
        return None
    return as_utc(isoparse(value))
