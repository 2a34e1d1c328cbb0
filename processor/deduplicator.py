"""Deduplication of events surfaced by several platform queries."""
import logging
from datetime import timedelta
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from processor.models import Event, EventKind, Platform
from processor.time_window import local_date
from storage.cache_ledger import CacheLedger

logger = logging.getLogger(__name__)

# Platforms whose item IDs are the same across live/upcoming/recent queries.
# Twitch stream, schedule segment and video IDs are unrelated namespaces.
SHARED_ID_PLATFORMS = frozenset({Platform.YOUTUBE})


def canonical_order(event: Event) -> tuple:
    return (
        event.kind.priority,
        event.platform.value,
        event.creator_id,
        event.occurs_at,
        event.source_item_id,
        event.title,
        event.permalink,
        event.thumbnail_url or '',
        event.related_item_id,
    )


class EventDeduplicator:
    """
    Removes events that describe the same broadcast.

    Three passes, applied to input sorted into a canonical order so that
    the result does not depend on which fetch finished first:

    1. Events with the same platform, kind and item ID collapse into one,
       preferring the one whose start matches the ledger's resolved time.
    2. An archived event within ``tolerance_seconds`` of a live event from the
       same platform and creator is the same broadcast; the live one is kept.
    3. Across query families of one platform and creator, equal item IDs
       mark duplicates where the platform shares IDs between families. A
       Twitch VOD matches a live stream through its stream_id. Where one
       side has no comparable ID, equal titles on the same local day mark
       duplicates. The higher priority kind is kept: live, then scheduled,
       then archived.
    """

    def __init__(
        self,
        time_zone: str = 'Asia/Tokyo',
        tolerance_seconds: int = 60,
        ledger: Optional[CacheLedger] = None
    ):
        """
        Initialize the deduplicator.

        Args:
            time_zone: IANA zone used for the same-day title rule
            tolerance_seconds: Max start time difference for live/archived matches
            ledger: Cache ledger consulted to break same-ID ties
        """
        self.zone = ZoneInfo(time_zone)
        self.tolerance = timedelta(seconds=tolerance_seconds)
        self.ledger = ledger

    def deduplicate(self, events: List[Event]) -> List[Event]:
        """
        Deduplicate events.

        Args:
            events: Normalized events from every creator and platform

        Returns:
            Surviving events in canonical order
        """
        ordered = sorted(events, key=canonical_order)
        unique = self._collapse_same_id(ordered)

        kept: List[Event] = []
        for candidate in unique:
            match = next((e for e in kept if self._same_broadcast(e, candidate)), None)
            if match is None:
                kept.append(candidate)
            else:
                logger.debug(
                    f"Dropping {candidate.platform.value} {candidate.kind.value} "
                    f"'{candidate.source_item_id}' for '{candidate.creator_id}', "
                    f"duplicate of {match.kind.value} '{match.source_item_id}'"
                )

        removed = len(events) - len(kept)
        if removed:
            logger.info(f"Deduplication removed {removed} of {len(events)} events")
        return kept

    def _collapse_same_id(self, ordered: List[Event]) -> List[Event]:
        winners: Dict[Tuple[Platform, EventKind, str], Event] = {}
        for event in ordered:
            key = (event.platform, event.kind, event.source_item_id)
            current = winners.get(key)
            if current is None or self._prefer(event, current):
                winners[key] = event
        return sorted(winners.values(), key=canonical_order)

    def _prefer(self, challenger: Event, current: Event) -> bool:
        """True if challenger should replace current for the same item ID."""
        if self.ledger is None:
            return False
        resolved = self.ledger.get_resolved_time(challenger.source_item_id)
        if resolved is None:
            return False
        return challenger.occurs_at == resolved and current.occurs_at != resolved

    def _same_broadcast(self, kept: Event, candidate: Event) -> bool:
        if kept.platform != candidate.platform or kept.creator_id != candidate.creator_id:
            return False
        if kept.kind == candidate.kind:
            return False

        kinds = {kept.kind, candidate.kind}
        if kinds == {EventKind.LIVE, EventKind.ARCHIVED}:
            if abs(kept.occurs_at - candidate.occurs_at) <= self.tolerance:
                return True

        if kept.platform in SHARED_ID_PLATFORMS:
            return kept.source_item_id == candidate.source_item_id

        if kinds == {EventKind.LIVE, EventKind.ARCHIVED}:
            live, archive = (kept, candidate) if kept.kind == EventKind.LIVE else (candidate, kept)
            if archive.related_item_id:
                return archive.related_item_id == live.source_item_id

        return (
            bool(kept.title)
            and kept.title == candidate.title
            and local_date(kept.occurs_at, self.zone) == local_date(candidate.occurs_at, self.zone)
        )
