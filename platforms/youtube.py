"""YouTube Data API adapter."""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from platforms.errors import AuthError, UpstreamLogicError
from platforms.http_client import PlatformHttpClient
from processor.models import Creator, EventKind, Platform, RawRecord
from storage.cache_ledger import CacheLedger, format_instant, parse_instant

logger = logging.getLogger(__name__)


class YouTubeAdapter:
    """Fetches live, upcoming and recently published videos for a channel."""

    API_URL = "https://www.googleapis.com/youtube/v3"
    MAX_IDS_PER_LOOKUP = 50

    def __init__(
        self,
        api_key: str,
        http: PlatformHttpClient,
        ledger: CacheLedger,
        recent_since: datetime,
        page_size: int = 10,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the YouTube adapter.

        Args:
            api_key: YouTube Data API key
            http: Shared HTTP client
            ledger: Cache ledger used to skip detail lookups for resolved items
            recent_since: Lower bound for the recently published query
            page_size: maxResults for search queries
            clock: Returns the current UTC time (injectable for tests)
        """
        self.api_key = api_key
        self.http = http
        self.ledger = ledger
        self.recent_since = recent_since
        self.page_size = page_size
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def authenticate(self) -> None:
        """The Data API uses a static key; only its presence can be checked."""
        if not self.api_key:
            raise AuthError("YouTube API key is required")

    def fetch_live(self, creator: Creator) -> List[RawRecord]:
        """
        Return the channel's current live broadcast with its actual start time.

        The search snippet's publishedAt is when the video was created, which
        can be days before the stream went live, so actualStartTime is looked
        up on the videos endpoint and attached as liveStreamingDetails.
        """
        items = self._search(creator, {'eventType': 'live'})[:1]
        if not items:
            return []

        video_id = self._video_id(items[0])
        details = self._lookup_streaming_details([video_id]).get(video_id)
        payload = dict(items[0])
        if details and details.get('actualStartTime'):
            payload['liveStreamingDetails'] = {
                'actualStartTime': details['actualStartTime']
            }
        return [self._record(EventKind.LIVE, creator, payload)]

    def fetch_scheduled(self, creator: Creator) -> List[RawRecord]:
        """
        Return upcoming broadcasts with their scheduled start time attached.

        The search endpoint only reports when an upcoming video was published,
        so scheduled start times come from the videos endpoint. Items already
        surfaced on the timeline whose cached time is still in the future are
        not looked up again. A cached time that has already passed is
        refreshed since the stream was evidently delayed, and an item not yet
        surfaced is looked up so its first appearance uses a current time.
        """
        items = self._search(creator, {'eventType': 'upcoming'})
        if not items:
            return []

        now = self.clock()
        scheduled: Dict[str, datetime] = {}
        pending = []
        for item in items:
            video_id = self._video_id(item)
            cached = self.ledger.get_resolved_time(video_id)
            if cached is not None and cached >= now and self.ledger.has_seen(video_id):
                scheduled[video_id] = cached
            else:
                pending.append(video_id)

        if pending:
            logger.info(
                f"Resolving scheduled start for {len(pending)} upcoming videos "
                f"of '{creator.creator_id}'"
            )
            for video_id, details in self._lookup_streaming_details(pending).items():
                scheduled_at = parse_instant(details.get('scheduledStartTime'))
                if scheduled_at is None:
                    continue
                self.ledger.record_resolved_time(video_id, scheduled_at)
                scheduled[video_id] = scheduled_at

        records = []
        for item in items:
            video_id = self._video_id(item)
            payload = dict(item)
            if video_id in scheduled:
                payload['liveStreamingDetails'] = {
                    'scheduledStartTime': format_instant(scheduled[video_id])
                }
            records.append(self._record(EventKind.SCHEDULED, creator, payload))
        return records

    def fetch_archived(self, creator: Creator) -> List[RawRecord]:
        items = self._search(
            creator, {'publishedAfter': format_instant(self.recent_since)}
        )
        return [self._record(EventKind.ARCHIVED, creator, item) for item in items]

    def _search(self, creator: Creator, extra_params: dict) -> List[dict]:
        """
        Run a channel search query.

        Args:
            creator: Roster creator
            extra_params: Query family parameters (eventType / publishedAfter)

        Returns:
            Search result items that carry a video ID
        """
        if not creator.youtube_channel_id:
            return []

        params = {
            'key': self.api_key,
            'channelId': creator.youtube_channel_id,
            'part': 'snippet',
            'type': 'video',
            'order': 'date',
            'maxResults': self.page_size,
        }
        params.update(extra_params)

        payload = self.http.get_json(f"{self.API_URL}/search", params=params)
        items = (payload or {}).get('items') or []
        if not isinstance(items, list):
            raise UpstreamLogicError("YouTube search returned unexpected items")

        return [
            item for item in items
            if isinstance(item, dict) and self._video_id(item)
        ]

    def _lookup_streaming_details(self, video_ids: List[str]) -> Dict[str, dict]:
        """Fetch liveStreamingDetails for up to 50 IDs per call, keyed by video ID."""
        found = {}
        for i in range(0, len(video_ids), self.MAX_IDS_PER_LOOKUP):
            batch = video_ids[i:i + self.MAX_IDS_PER_LOOKUP]
            payload = self.http.get_json(
                f"{self.API_URL}/videos",
                params={
                    'key': self.api_key,
                    'part': 'liveStreamingDetails',
                    'id': ','.join(batch),
                }
            )
            items = (payload or {}).get('items') or []
            if not isinstance(items, list):
                raise UpstreamLogicError("YouTube videos returned unexpected items")

            for item in items:
                if not isinstance(item, dict) or not item.get('id'):
                    continue
                details = item.get('liveStreamingDetails')
                if isinstance(details, dict):
                    found[item['id']] = details
        return found

    @staticmethod
    def _video_id(item: dict) -> str:
        identifier = item.get('id')
        if isinstance(identifier, dict):
            return identifier.get('videoId') or ''
        return ''

    @staticmethod
    def _record(kind: EventKind, creator: Creator, payload: dict) -> RawRecord:
        return RawRecord(
            platform=Platform.YOUTUBE,
            kind=kind,
            creator_id=creator.creator_id,
            payload=payload
        )
