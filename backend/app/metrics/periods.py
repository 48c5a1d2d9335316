from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from backend.app.metrics.models import Granularity


def _shift_month(d: date, months: int) -> date:
    index = d.year * 12 + (d.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


class PeriodResolver:
    """Maps instants to day/week/month boundaries in a reference timezone.

    Weeks start on Monday (ISO). Boundaries are computed on local calendar
    dates and then localized, so a period always starts at local midnight even
    across DST transitions.
    """

    def __init__(self, tz_name: str) -> None:
        self.tz_name = tz_name
        self.tz = ZoneInfo(tz_name)

    def _local_date(self, t: datetime) -> date:
        if t.tzinfo is None:
            t = t.replace(tzinfo=timezone.utc)
        return t.astimezone(self.tz).date()

    def at_local_midnight(self, d: date) -> datetime:
        return datetime(d.year, d.month, d.day, tzinfo=self.tz)

    def start_date(self, t: datetime, granularity: Granularity) -> date:
        d = self._local_date(t)
        if granularity is Granularity.daily:
            return d
        if granularity is Granularity.weekly:
            return d - timedelta(days=d.weekday())
        return d.replace(day=1)

    def period_start(self, t: datetime, granularity: Granularity) -> datetime:
        return self.at_local_midnight(self.start_date(t, granularity))

    def _step(self, start: datetime, granularity: Granularity, n: int) -> datetime:
        d = self.start_date(start, granularity)
        if granularity is Granularity.daily:
            return self.at_local_midnight(d + timedelta(days=n))
        if granularity is Granularity.weekly:
            return self.at_local_midnight(d + timedelta(weeks=n))
        return self.at_local_midnight(_shift_month(d, n))

    def previous_period(self, start: datetime, granularity: Granularity) -> datetime:
        return self._step(start, granularity, -1)

    def next_period(self, start: datetime, granularity: Granularity) -> datetime:
        return self._step(start, granularity, 1)

    def window(self, start: datetime, granularity: Granularity) -> tuple[datetime, datetime]:
        """Half-open ``[start, end)`` window of the period containing ``start``."""
        begin = self.period_start(start, granularity)
        return begin, self.next_period(begin, granularity)

    def month_start(self, year: int, month: int) -> datetime:
        return self.at_local_midnight(date(year, month, 1))
