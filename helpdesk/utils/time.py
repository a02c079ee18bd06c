from __future__ import annotations

from collections.abc import Collection, Mapping
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

# Look-ahead bound for business-hour scheduling; a schedule with no open
# window inside this many days is treated as unusable.
_MAX_SCAN_DAYS = 400


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def sunday_based_weekday(value: date) -> int:
    """Weekday number with Sunday=0 .. Saturday=6."""
    return (value.weekday() + 1) % 7


def parse_clock(value: str) -> time:
    hours, _, minutes = value.strip().partition(":")
    return time(hour=int(hours), minute=int(minutes or 0))


def add_business_minutes(
    start: datetime,
    minutes: int,
    windows: Mapping[int, tuple[time, time]],
    tz_name: str = "UTC",
    holidays: Collection[date] = (),
) -> datetime:
    """Advance ``start`` by ``minutes`` counted only inside business windows.

    ``windows`` maps a Sunday-based weekday to its (open, close) wall-clock
    times in ``tz_name``. Days missing from the mapping and dates in
    ``holidays`` are skipped. Raises ``ValueError`` when no window can be
    found.
    """
    if minutes <= 0:
        return start
    zone = ZoneInfo(tz_name)
    cursor = start.astimezone(zone)
    remaining = timedelta(minutes=minutes)

    for _ in range(_MAX_SCAN_DAYS):
        day = cursor.date()
        window = windows.get(sunday_based_weekday(day))
        if window is not None and day not in holidays:
            opens = datetime.combine(day, window[0], tzinfo=zone)
            closes = datetime.combine(day, window[1], tzinfo=zone)
            if cursor < opens:
                cursor = opens
            if cursor < closes:
                available = closes - cursor
                if remaining <= available:
                    return (cursor + remaining).astimezone(UTC)
                remaining -= available
        cursor = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)

    raise ValueError("No business window available for SLA scheduling")
