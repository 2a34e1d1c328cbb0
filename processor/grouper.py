"""Grouping of events by local calendar day."""
from collections import defaultdict
from typing import Dict, List
from zoneinfo import ZoneInfo

from processor.models import DayGroup, Event
from processor.time_window import local_date


class DayGrouper:
    """Buckets events by local day in a fixed time zone."""

    def __init__(self, time_zone: str = 'Asia/Tokyo'):
        self.zone = ZoneInfo(time_zone)

    def group(self, events: List[Event]) -> List[DayGroup]:
        """
        Group events by local date.

        Groups are ordered by date. Events inside a group are ordered by
        start time, then platform, then creator, so the output is the same
        for any input order.

        Args:
            events: Windowed events

        Returns:
            Ordered list of DayGroup objects
        """
        buckets: Dict = defaultdict(list)
        for event in events:
            buckets[local_date(event.occurs_at, self.zone)].append(event)

        return [
            DayGroup(
                local_date=day,
                events=tuple(sorted(buckets[day], key=lambda e: e.sort_key()))
            )
            for day in sorted(buckets)
        ]
