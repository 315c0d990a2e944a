"""Rolling timeframes for listening statistics.

Hey future me - a timeframe maps to a START cutoff; events with played_at >= cutoff count.
Cutoffs are truncated to midnight UTC so "this month" doesn't shift every second and
paging through results stays consistent within a day.

The old system computed "week" as "now minus ONE day". We default to a real 7-day lookback;
pass week_lookback_days=1 (SYNC_WEEK_LOOKBACK_DAYS=1) if old clients depend on the quirk.
"""

import calendar
from datetime import UTC, datetime, timedelta
from enum import Enum

from soundtrack.domain.exceptions import ValidationError

# Nothing was ever recorded before this - "all" starts here.
ALL_TIME_START = datetime(2022, 1, 1, tzinfo=UTC)


def _shift_months(value: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day (Mar 31 - 1 month = Feb 28/29)."""
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class Timeframe(str, Enum):
    """Named rolling window bounding which playback events count."""

    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"

    @classmethod
    def parse(cls, value: "str | Timeframe") -> "Timeframe":
        """Parse user input, raising ValidationError for unknown values."""
        if isinstance(value, Timeframe):
            return value
        try:
            return cls(value.lower().strip())
        except ValueError as e:
            allowed = ", ".join(t.value for t in cls)
            raise ValidationError(
                f"Invalid timeframe '{value}' (expected one of: {allowed})"
            ) from e

    def start_date(self, now: datetime, week_lookback_days: int = 7) -> datetime:
        """Compute the inclusive start cutoff for this timeframe.

        Args:
            now: Current time (aware; naive values are treated as UTC)
            week_lookback_days: Length of the WEEK window in days

        Returns:
            Aware UTC datetime at midnight
        """
        if self is Timeframe.ALL:
            return ALL_TIME_START

        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        midnight = now.astimezone(UTC).replace(
            hour=0, minute=0, second=0, microsecond=0
        )

        if self is Timeframe.YEAR:
            return _shift_months(midnight, -12)
        if self is Timeframe.MONTH:
            return _shift_months(midnight, -1)
        return midnight - timedelta(days=week_lookback_days)
