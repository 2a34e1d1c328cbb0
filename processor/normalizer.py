"""Normalizer mapping platform-native records to canonical events."""
import logging
import re
from datetime import datetime
from typing import List, Optional

from bs4 import BeautifulSoup

from processor.models import Event, EventKind, Platform, RawRecord
from storage.cache_ledger import CacheLedger, parse_instant

logger = logging.getLogger(__name__)

THUMBNAIL_WIDTH = 320
THUMBNAIL_HEIGHT = 180

# Twitch uses {width}x{height} for streams and %{width}x%{height} for VODs
_TEMPLATE_PATTERN = re.compile(r'%?\{(width|height)\}')


def resolve_thumbnail(url: Optional[str]) -> Optional[str]:
    """
    Replace width/height placeholders in a thumbnail URL with fixed values.

    Args:
        url: Thumbnail URL, possibly templated

    Returns:
        Concrete URL, or None if there is no thumbnail
    """
    if not url or not url.strip():
        return None

    def _size(match):
        return str(THUMBNAIL_WIDTH if match.group(1) == 'width' else THUMBNAIL_HEIGHT)

    return _TEMPLATE_PATTERN.sub(_size, url.strip())


def unescape_text(text: Optional[str]) -> str:
    """Decode HTML entities such as &amp; or &#39; that the YouTube API leaves in snippets."""
    if not text:
        return ''
    if '&' not in text:
        return text
    return BeautifulSoup(text, 'html.parser').get_text()


class EventNormalizer:
    """Maps RawRecord objects from every adapter into Event objects."""

    def __init__(self, ledger: Optional[CacheLedger] = None):
        """
        Initialize the normalizer.

        Args:
            ledger: Cache ledger consulted for scheduled times the adapter
                could not attach
        """
        self.ledger = ledger

    def normalize(self, records: List[RawRecord]) -> List[Event]:
        """
        Normalize raw records, dropping those that cannot become an Event.

        Args:
            records: Raw records from platform adapters

        Returns:
            List of Event objects
        """
        events = []

        for record in records:
            try:
                event = self._normalize_single(record)
                if event:
                    events.append(event)
            except (KeyError, TypeError, AttributeError, ValueError) as e:
                logger.warning(
                    f"Failed to normalize {record.platform.value} {record.kind.value} "
                    f"record for '{record.creator_id}': {e}"
                )
                continue

        logger.info(
            f"Normalized {len(events)} events out of {len(records)} raw records"
        )
        return events

    def _normalize_single(self, record: RawRecord) -> Optional[Event]:
        if record.platform == Platform.TWITCH:
            event = self._from_twitch(record)
        else:
            event = self._from_youtube(record)

        if event is None:
            return None

        if event.kind == EventKind.SCHEDULED and not event.title.strip():
            logger.debug(
                f"Dropping untitled schedule slot {event.source_item_id} "
                f"for '{event.creator_id}'"
            )
            return None

        return event

    def _from_twitch(self, record: RawRecord) -> Optional[Event]:
        """
        Map a Helix stream, schedule segment or video object.

        Args:
            record: Twitch raw record

        Returns:
            Event or None if the record has no usable start time
        """
        payload = record.payload
        related_id = ''

        if record.kind == EventKind.LIVE:
            occurs_at = parse_instant(payload.get('started_at'))
            login = payload.get('user_login') or ''
            permalink = f"https://twitch.tv/{login}" if login else ''
            thumbnail = payload.get('thumbnail_url')
        elif record.kind == EventKind.SCHEDULED:
            occurs_at = parse_instant(payload.get('start_time'))
            permalink = ''
            thumbnail = None
        else:
            occurs_at = parse_instant(payload.get('created_at'))
            permalink = payload.get('url') or ''
            thumbnail = payload.get('thumbnail_url')
            related_id = payload.get('stream_id') or ''

        return self._build(record, occurs_at, payload.get('title'), permalink,
                           thumbnail, payload.get('id'), related_id)

    def _from_youtube(self, record: RawRecord) -> Optional[Event]:
        """
        Map a YouTube search result.

        Scheduled records take their time from the attached
        liveStreamingDetails, then from the ledger. Live records use the
        attached actualStartTime and fall back to publishedAt. The search
        snippet's publishedAt is never a start time for scheduled records.
        """
        payload = record.payload
        snippet = payload.get('snippet') or {}
        video_id = (payload.get('id') or {}).get('videoId')
        details = payload.get('liveStreamingDetails') or {}

        if record.kind == EventKind.SCHEDULED:
            occurs_at = parse_instant(details.get('scheduledStartTime'))
            if occurs_at is None and self.ledger is not None and video_id:
                occurs_at = self.ledger.get_resolved_time(video_id)
        elif record.kind == EventKind.LIVE:
            occurs_at = (
                parse_instant(details.get('actualStartTime'))
                or parse_instant(snippet.get('publishedAt'))
            )
        else:
            occurs_at = parse_instant(snippet.get('publishedAt'))

        thumbnails = snippet.get('thumbnails') or {}
        thumbnail = (thumbnails.get('medium') or thumbnails.get('default') or {}).get('url')
        permalink = f"https://youtu.be/{video_id}" if video_id else ''

        return self._build(record, occurs_at, unescape_text(snippet.get('title')),
                           permalink, thumbnail, video_id)

    def _build(
        self,
        record: RawRecord,
        occurs_at: Optional[datetime],
        title: Optional[str],
        permalink: str,
        thumbnail: Optional[str],
        source_item_id: Optional[str],
        related_item_id: Optional[str] = ''
    ) -> Optional[Event]:
        if occurs_at is None:
            logger.warning(
                f"Dropping {record.platform.value} {record.kind.value} record "
                f"for '{record.creator_id}': no usable start time"
            )
            return None

        if not source_item_id:
            logger.warning(
                f"Dropping {record.platform.value} {record.kind.value} record "
                f"for '{record.creator_id}': missing item id"
            )
            return None

        return Event(
            platform=record.platform,
            creator_id=record.creator_id,
            kind=record.kind,
            title=(title or '').strip(),
            permalink=permalink,
            occurs_at=occurs_at,
            thumbnail_url=resolve_thumbnail(thumbnail),
            source_item_id=str(source_item_id),
            related_item_id=str(related_item_id or '')
        )
