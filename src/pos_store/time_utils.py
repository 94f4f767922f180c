"""UTC clock helpers shared by the store, the session manager and sync."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Callable, Optional


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware 'now' in UTC."""
    return datetime.now(UTC)


def to_iso(moment: datetime) -> str:
    """Serialise to ISO-8601 with millisecond precision and a trailing ``Z``.

    Naive datetimes are treated as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    text = moment.astimezone(UTC).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into an aware UTC datetime.

    - None / "" / garbage -> None
    - "...Z" or "...+HH:MM" is converted to UTC
    - naive values are interpreted as UTC
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def epoch_millis(moment: datetime) -> int:
    """Milliseconds since the epoch, used as a cache-buster on pulls."""
    return int(moment.timestamp() * 1000)
