"""Retention and look-ahead window for aggregated events."""
import calendar
import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import List, Optional
from zoneinfo import ZoneInfo

from processor.models import Event, EventKind

logger = logging.getLogger(__name__)


def local_date(instant: datetime, zone: tzinfo) -> date:
    """Calendar day of an instant in the target time zone."""
    return instant.astimezone(zone).date()


def add_months(day: date, months: int) -> date:
    """
    Add calendar months to a date, clamping to the last day of the month.

    Args:
        day: Starting date
        months: Months to add

    Returns:
        Shifted date
    """
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


class TimeWindowFilter:
    """
    Keeps live events, scheduled events up to the look-ahead bound and
    archived events from the last ``past_days`` local days.
    """

    def __init__(
        self,
        time_zone: str = 'Asia/Tokyo',
        past_days: int = 1,
        future_days: int = 30,
        future_months: Optional[int] = None
    ):
        """
        Initialize the window filter.

        Args:
            time_zone: IANA name of the zone that defines "today"
            past_days: Local days before today for which archives are kept
            future_days: Days ahead of now for which schedules are kept
            future_months: Calendar months ahead, used instead of future_days when set
        """
        self.zone = ZoneInfo(time_zone)
        self.past_days = past_days
        self.future_days = future_days
        self.future_months = future_months

    def future_bound(self, now: datetime) -> datetime:
        """Latest instant a scheduled event may start at and still be kept."""
        if self.future_months is None:
            return now + timedelta(days=self.future_days)

        local_now = now.astimezone(self.zone)
        shifted = add_months(local_now.date(), self.future_months)
        return datetime.combine(shifted, local_now.timetz())

    def archive_range(self, now: datetime) -> tuple:
        """Inclusive (first, last) local dates for archived events."""
        today = local_date(now, self.zone)
        return today - timedelta(days=self.past_days), today

    def apply(self, events: List[Event], now: datetime) -> List[Event]:
        """
        Drop events outside the window for their kind.

        Args:
            events: Deduplicated events
            now: Current instant (timezone-aware)

        Returns:
            Retained events in input order
        """
        bound = self.future_bound(now)
        first_day, last_day = self.archive_range(now)

        retained = [
            event for event in events
            if self._keep(event, bound, first_day, last_day)
        ]

        logger.info(
            f"Time window kept {len(retained)} of {len(events)} events "
            f"(archives {first_day.isoformat()}..{last_day.isoformat()}, "
            f"schedules until {bound.isoformat()})"
        )
        return retained

    def _keep(self, event: Event, bound: datetime, first_day: date, last_day: date) -> bool:
        if event.kind == EventKind.LIVE:
            return True
        if event.kind == EventKind.SCHEDULED:
            return event.occurs_at <= bound
        return first_day <= local_date(event.occurs_at, self.zone) <= last_day


def start_of_local_day(day: date, zone: tzinfo) -> datetime:
    """Midnight of a local date as an aware datetime."""
    return datetime.combine(day, time.min, tzinfo=zone)
