"""Twitch Helix adapter."""
import logging
import threading
from typing import Dict, List, Optional

from platforms.errors import AuthError, PlatformError, UpstreamLogicError
from platforms.http_client import PlatformHttpClient
from processor.models import Creator, EventKind, Platform, RawRecord

logger = logging.getLogger(__name__)


class TwitchAdapter:
    """Fetches live streams, schedule segments and archived VODs from Twitch."""

    TOKEN_URL = "https://id.twitch.tv/oauth2/token"
    API_URL = "https://api.twitch.tv/helix"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        http: PlatformHttpClient,
        archive_page_size: int = 20
    ):
        """
        Initialize the Twitch adapter.

        Args:
            client_id: Twitch application client ID
            client_secret: Twitch application client secret
            http: Shared HTTP client
            archive_page_size: Number of VODs requested per creator
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.http = http
        self.archive_page_size = archive_page_size
        self._token: Optional[str] = None
        self._user_ids: Dict[str, Optional[str]] = {}
        self._user_ids_lock = threading.Lock()

    def authenticate(self) -> None:
        """
        Acquire an app access token with the client credentials grant.

        Raises:
            AuthError: If credentials are missing or the token request fails
        """
        if not self.client_id or not self.client_secret:
            raise AuthError("Twitch client ID and secret are required")

        try:
            payload = self.http.post_json(
                self.TOKEN_URL,
                params={
                    'client_id': self.client_id,
                    'client_secret': self.client_secret,
                    'grant_type': 'client_credentials'
                }
            )
        except PlatformError as e:
            raise AuthError(f"Twitch token request failed: {e}") from e

        token = (payload or {}).get('access_token')
        if not token:
            raise AuthError("Twitch token response did not include an access token")

        self._token = token
        logger.info("Acquired Twitch app access token")

    def fetch_live(self, creator: Creator) -> List[RawRecord]:
        """Return the creator's current stream, if any, as a single-record list."""
        if not creator.twitch_login:
            return []

        payload = self._get('/streams', {'user_login': creator.twitch_login})
        streams = self._data(payload, '/streams')
        if not streams:
            return []

        return [self._record(EventKind.LIVE, creator, streams[0])]

    def fetch_scheduled(self, creator: Creator) -> List[RawRecord]:
        """
        Return upcoming schedule segments for a creator.

        Canceled segments are skipped. A creator without a schedule gets a
        404 from Helix, which yields an empty list.
        """
        user_id = self._resolve_user_id(creator)
        if not user_id:
            return []

        payload = self._get(
            '/schedule', {'broadcaster_id': user_id}, allow_not_found=True
        )
        if payload is None:
            return []

        data = payload.get('data') or {}
        if not isinstance(data, dict):
            raise UpstreamLogicError("Twitch /schedule returned unexpected data")

        segments = data.get('segments') or []
        return [
            self._record(EventKind.SCHEDULED, creator, segment)
            for segment in segments
            if isinstance(segment, dict) and not segment.get('canceled_until')
        ]

    def fetch_archived(self, creator: Creator) -> List[RawRecord]:
        """Return the creator's most recent archived broadcasts."""
        user_id = self._resolve_user_id(creator)
        if not user_id:
            return []

        payload = self._get('/videos', {
            'user_id': user_id,
            'type': 'archive',
            'first': self.archive_page_size
        })
        videos = self._data(payload, '/videos')
        return [self._record(EventKind.ARCHIVED, creator, video) for video in videos]

    def _resolve_user_id(self, creator: Creator) -> Optional[str]:
        """
        Look up the broadcaster ID for a login, memoised for the adapter's lifetime.

        Args:
            creator: Roster creator

        Returns:
            Broadcaster ID or None if the login is unknown to Twitch
        """
        login = creator.twitch_login
        if not login:
            return None

        with self._user_ids_lock:
            if login in self._user_ids:
                return self._user_ids[login]

        payload = self._get('/users', {'login': login})
        users = self._data(payload, '/users')
        user_id = users[0].get('id') if users else None
        if not user_id:
            logger.warning(f"Twitch user not found for login '{login}'")

        with self._user_ids_lock:
            self._user_ids[login] = user_id
        return user_id

    def _get(self, path: str, params: dict, allow_not_found: bool = False):
        if not self._token:
            raise AuthError("Twitch adapter used before authenticate()")

        return self.http.get_json(
            f"{self.API_URL}{path}",
            params=params,
            headers={
                'Client-ID': self.client_id,
                'Authorization': f"Bearer {self._token}"
            },
            allow_not_found=allow_not_found
        )

    @staticmethod
    def _data(payload: Optional[dict], path: str) -> List[dict]:
        data = (payload or {}).get('data') or []
        if not isinstance(data, list):
            raise UpstreamLogicError(f"Twitch {path} returned unexpected data")
        return [item for item in data if isinstance(item, dict)]

    @staticmethod
    def _record(kind: EventKind, creator: Creator, payload: dict) -> RawRecord:
        return RawRecord(
            platform=Platform.TWITCH,
            kind=kind,
            creator_id=creator.creator_id,
            payload=payload
        )
