"""Cache ledger of surfaced items and resolved schedule times."""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional, Set

logger = logging.getLogger(__name__)


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 instant into a UTC datetime.

    Accepts a trailing 'Z'. Naive values are taken as UTC.

    Args:
        value: ISO 8601 string

    Returns:
        Timezone-aware UTC datetime, or None if the value is not a valid instant
    """
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    """Format a UTC datetime as ISO 8601 with a 'Z' suffix."""
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


class CacheLedger:
    """
    Ledger persisted across runs.

    Holds the item IDs already surfaced on the timeline and the scheduled
    start times already confirmed through a platform detail lookup. All
    access goes through a lock because fetch workers update it concurrently.
    """

    def __init__(
        self,
        seen_item_ids: Optional[Iterable[str]] = None,
        resolved_schedule_times: Optional[Dict[str, datetime]] = None,
        last_run_at: Optional[datetime] = None
    ):
        self._seen: Set[str] = set(seen_item_ids or ())
        self._resolved: Dict[str, datetime] = dict(resolved_schedule_times or {})
        self._last_run_at = last_run_at
        self._lock = threading.Lock()

    @property
    def seen_item_ids(self) -> Set[str]:
        with self._lock:
            return set(self._seen)

    @property
    def resolved_schedule_times(self) -> Dict[str, datetime]:
        with self._lock:
            return dict(self._resolved)

    @property
    def last_run_at(self) -> Optional[datetime]:
        with self._lock:
            return self._last_run_at

    def has_seen(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._seen

    def mark_seen(self, item_ids: Iterable[str]) -> Set[str]:
        """
        Record item IDs as surfaced.

        Args:
            item_ids: IDs of items placed on the timeline

        Returns:
            The subset of IDs that had not been seen before
        """
        with self._lock:
            new_ids = {item_id for item_id in item_ids if item_id not in self._seen}
            self._seen.update(new_ids)
            return new_ids

    def get_resolved_time(self, item_id: str) -> Optional[datetime]:
        with self._lock:
            return self._resolved.get(item_id)

    def record_resolved_time(self, item_id: str, scheduled_at: datetime) -> None:
        with self._lock:
            self._resolved[item_id] = scheduled_at.astimezone(timezone.utc)

    def prune_resolved(self, now: datetime, retention_days: int) -> int:
        """
        Drop resolved times older than the retention period.

        Args:
            now: Current instant
            retention_days: Days a resolved time is kept after it has passed

        Returns:
            Number of entries removed
        """
        cutoff = now - timedelta(days=retention_days)
        with self._lock:
            stale = [key for key, value in self._resolved.items() if value < cutoff]
            for key in stale:
                del self._resolved[key]
        if stale:
            logger.info(f"Pruned {len(stale)} stale resolved schedule times")
        return len(stale)

    def retain_seen(self, active_ids: Iterable[str]) -> int:
        """
        Forget seen IDs that the platforms no longer return.

        Args:
            active_ids: IDs returned by this run's queries

        Returns:
            Number of IDs removed
        """
        active = set(active_ids)
        with self._lock:
            stale = self._seen - active
            self._seen &= active
        if stale:
            logger.info(f"Pruned {len(stale)} seen item IDs no longer returned")
        return len(stale)

    def mark_run(self, when: datetime) -> None:
        with self._lock:
            self._last_run_at = when.astimezone(timezone.utc)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the persisted ledger document."""
        with self._lock:
            return {
                'seenItemIds': sorted(self._seen),
                'resolvedScheduleTimes': {
                    key: format_instant(value)
                    for key, value in sorted(self._resolved.items())
                },
                'lastRunAt': (
                    format_instant(self._last_run_at) if self._last_run_at else None
                ),
            }

    @classmethod
    def from_document(cls, document: Any) -> 'CacheLedger':
        """
        Build a ledger from a persisted document.

        Malformed entries are skipped; a document that is not an object
        yields an empty ledger.

        Args:
            document: Decoded ledger document

        Returns:
            CacheLedger instance
        """
        if not isinstance(document, dict):
            if document is not None:
                logger.warning("Ledger document is not an object, starting empty")
            return cls()

        seen = document.get('seenItemIds') or []
        if not isinstance(seen, list):
            logger.warning("Ledger seenItemIds is malformed, ignoring")
            seen = []

        resolved = {}
        raw_resolved = document.get('resolvedScheduleTimes') or {}
        if isinstance(raw_resolved, dict):
            for key, value in raw_resolved.items():
                instant = parse_instant(value)
                if instant is None:
                    logger.warning(f"Ignoring malformed resolved time for '{key}'")
                    continue
                resolved[str(key)] = instant
        else:
            logger.warning("Ledger resolvedScheduleTimes is malformed, ignoring")

        return cls(
            seen_item_ids=[str(item) for item in seen if isinstance(item, str)],
            resolved_schedule_times=resolved,
            last_run_at=parse_instant(document.get('lastRunAt'))
        )
