"""UTC clock helpers shared by services that accept injectable time sources."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

NowFactory = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values read back from SQLite."""

    if value is None:
        return None

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)

    return value.astimezone(UTC)


def elapsed_ms(start: datetime | None, end: datetime | None) -> int | None:
    normalized_start = ensure_utc(start)
    normalized_end = ensure_utc(end)
    if normalized_start is None or normalized_end is None:
        return None

    return max(0, int((normalized_end - normalized_start) / timedelta(milliseconds=1)))


def ms_before(now: datetime, milliseconds: int) -> datetime:
    return now - timedelta(milliseconds=milliseconds)


def ms_after(now: datetime, milliseconds: int) -> datetime:
    return now + timedelta(milliseconds=milliseconds)


__all__ = [
    "NowFactory",
    "elapsed_ms",
    "ensure_utc",
    "ms_after",
    "ms_before",
    "utc_now",
]
