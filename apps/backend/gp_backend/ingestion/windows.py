"""Named recency windows resolved to concrete cutoff timestamps"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

LAST_DAY = "last day"
LAST_WEEK = "last week"
LAST_MONTH = "last month"
LAST_3_MONTHS = "last 3 months"
LAST_6_MONTHS = "last 6 months"

HOUR_OFFSETS: dict[str, timedelta] = {
    LAST_DAY: timedelta(hours=24),
    LAST_WEEK: timedelta(hours=168),
}

MONTH_OFFSETS: dict[str, int] = {
    LAST_MONTH: 1,
    LAST_3_MONTHS: 3,
    LAST_6_MONTHS: 6,
}

WINDOW_NAMES: tuple[str, ...] = (*HOUR_OFFSETS, *MONTH_OFFSETS)


def subtract_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length"""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def resolve(name: str | None, now: datetime | None = None) -> datetime | None:
    """Returns the cutoff for a named window; unknown names mean no cutoff"""
    if not name:
        return None
    now = now or datetime.now(UTC)
    key = name.strip().lower()

    if key in HOUR_OFFSETS:
        return now - HOUR_OFFSETS[key]
    if key in MONTH_OFFSETS:
        return subtract_months(now, MONTH_OFFSETS[key])
    return None


@dataclass(frozen=True)
class TimeWindow:
    """Cutoff is exclusive: a timestamp equal to the cutoff is outside the window"""

    cutoff: datetime | None = None
    name: str | None = None

    @classmethod
    def named(cls, name: str | None, now: datetime | None = None) -> TimeWindow:
        return cls(cutoff=resolve(name, now), name=name)

    @classmethod
    def unbounded(cls) -> TimeWindow:
        return cls()

    @property
    def is_bounded(self) -> bool:
        return self.cutoff is not None

    def contains(self, moment: datetime) -> bool:
        if self.cutoff is None:
            return True
        return as_utc(moment) > as_utc(self.cutoff)


def as_utc(moment: datetime) -> datetime:
    # SQLite drops tzinfo on round trip; stored values are always UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)
