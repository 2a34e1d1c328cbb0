"""Unit tests for TwitchAdapter."""
import pytest
import responses

from platforms.errors import AuthError, TransientApiError
from platforms.http_client import PlatformHttpClient
from platforms.twitch import TwitchAdapter
from processor.models import Creator, EventKind, Platform

TOKEN_URL = "https://id.twitch.tv/oauth2/token"
STREAMS_URL = "https://api.twitch.tv/helix/streams"
USERS_URL = "https://api.twitch.tv/helix/users"
SCHEDULE_URL = "https://api.twitch.tv/helix/schedule"
VIDEOS_URL = "https://api.twitch.tv/helix/videos"


@pytest.fixture
def creator():
    """Create a roster creator with a Twitch login."""
    return Creator(
        creator_id='alice',
        display_name='Alice',
        twitch_login='alice_live',
        youtube_channel_id='UC123'
    )


@pytest.fixture
def adapter():
    """Create an adapter with a single-attempt HTTP client."""
    return TwitchAdapter(
        client_id='client-id',
        client_secret='client-secret',
        http=PlatformHttpClient(timeout=5, max_attempts=1),
        archive_page_size=5
    )


def _add_token():
    responses.add(
        responses.POST,
        TOKEN_URL,
        json={'access_token': 'token-123', 'expires_in': 3600},
        status=200
    )


def _add_user(user_id='1001'):
    responses.add(
        responses.GET,
        USERS_URL,
        json={'data': [{'id': user_id, 'login': 'alice_live'}]},
        status=200
    )


class TestTwitchAdapter:
    """Test cases for TwitchAdapter class."""

    @responses.activate
    def test_authenticate_success(self, adapter):
        """Test token acquisition and bearer header on later calls."""
        _add_token()
        responses.add(responses.GET, STREAMS_URL, json={'data': []}, status=200)

        adapter.authenticate()
        adapter.fetch_live(Creator('bob', 'Bob', twitch_login='bob'))

        request = responses.calls[1].request
        assert request.headers['Authorization'] == 'Bearer token-123'
        assert request.headers['Client-ID'] == 'client-id'

    def test_authenticate_missing_credentials(self):
        """Test missing credentials raise AuthError without any request."""
        adapter = TwitchAdapter('', '', PlatformHttpClient(timeout=5, max_attempts=1))

        with pytest.raises(AuthError):
            adapter.authenticate()

    @responses.activate
    def test_authenticate_rejected(self, adapter):
        """Test a rejected token request raises AuthError."""
        responses.add(
            responses.POST,
            TOKEN_URL,
            json={'status': 400, 'message': 'invalid client secret'},
            status=400
        )

        with pytest.raises(AuthError):
            adapter.authenticate()

    @responses.activate
    def test_authenticate_without_token_in_response(self, adapter):
        """Test a token response lacking access_token raises AuthError."""
        responses.add(responses.POST, TOKEN_URL, json={}, status=200)

        with pytest.raises(AuthError):
            adapter.authenticate()

    @responses.activate
    def test_fetch_live(self, adapter, creator):
        """Test the first live stream is returned as a LIVE record."""
        _add_token()
        responses.add(
            responses.GET,
            STREAMS_URL,
            json={'data': [{
                'id': 'stream-1',
                'user_login': 'alice_live',
                'title': 'Morning chat',
                'started_at': '2024-01-10T10:00:00Z',
                'thumbnail_url': 'https://cdn/live_{width}x{height}.jpg'
            }]},
            status=200
        )

        adapter.authenticate()
        records = adapter.fetch_live(creator)

        assert len(records) == 1
        assert records[0].platform == Platform.TWITCH
        assert records[0].kind == EventKind.LIVE
        assert records[0].creator_id == 'alice'
        assert records[0].payload['id'] == 'stream-1'
        assert 'user_login=alice_live' in responses.calls[1].request.url

    @responses.activate
    def test_fetch_live_offline(self, adapter, creator):
        """Test an offline creator yields no records."""
        _add_token()
        responses.add(responses.GET, STREAMS_URL, json={'data': []}, status=200)

        adapter.authenticate()

        assert adapter.fetch_live(creator) == []

    def test_fetch_without_login(self, adapter):
        """Test a creator without a Twitch login is skipped without requests."""
        creator = Creator('carol', 'Carol', youtube_channel_id='UC9')

        assert adapter.fetch_live(creator) == []
        assert adapter.fetch_scheduled(creator) == []
        assert adapter.fetch_archived(creator) == []

    @responses.activate
    def test_fetch_scheduled_skips_canceled(self, adapter, creator):
        """Test canceled segments are skipped."""
        _add_token()
        _add_user()
        responses.add(
            responses.GET,
            SCHEDULE_URL,
            json={'data': {'segments': [
                {'id': 'seg-1', 'start_time': '2024-01-11T12:00:00Z', 'title': 'Game night',
                 'canceled_until': None},
                {'id': 'seg-2', 'start_time': '2024-01-12T12:00:00Z', 'title': 'Cooking',
                 'canceled_until': '2024-01-12T14:00:00Z'},
            ]}},
            status=200
        )

        adapter.authenticate()
        records = adapter.fetch_scheduled(creator)

        assert [r.payload['id'] for r in records] == ['seg-1']
        assert records[0].kind == EventKind.SCHEDULED
        assert 'broadcaster_id=1001' in responses.calls[2].request.url

    @responses.activate
    def test_fetch_scheduled_no_schedule(self, adapter, creator):
        """Test a 404 from the schedule endpoint yields no records."""
        _add_token()
        _add_user()
        responses.add(
            responses.GET,
            SCHEDULE_URL,
            json={'error': 'Not Found', 'status': 404, 'message': 'segments were not found'},
            status=404
        )

        adapter.authenticate()

        assert adapter.fetch_scheduled(creator) == []

    @responses.activate
    def test_fetch_archived(self, adapter, creator):
        """Test archived VODs are requested with type=archive."""
        _add_token()
        _add_user()
        responses.add(
            responses.GET,
            VIDEOS_URL,
            json={'data': [
                {'id': 'v1', 'title': 'Morning chat', 'created_at': '2024-01-10T10:00:02Z',
                 'url': 'https://www.twitch.tv/videos/v1'},
                {'id': 'v2', 'title': 'Late night', 'created_at': '2024-01-09T22:00:00Z',
                 'url': 'https://www.twitch.tv/videos/v2'},
            ]},
            status=200
        )

        adapter.authenticate()
        records = adapter.fetch_archived(creator)

        assert [r.payload['id'] for r in records] == ['v1', 'v2']
        assert all(r.kind == EventKind.ARCHIVED for r in records)
        url = responses.calls[2].request.url
        assert 'type=archive' in url
        assert 'first=5' in url

    @responses.activate
    def test_user_id_lookup_is_memoised(self, adapter, creator):
        """Test the users endpoint is queried once per login."""
        _add_token()
        _add_user()
        responses.add(responses.GET, SCHEDULE_URL, json={'data': {'segments': []}}, status=200)
        responses.add(responses.GET, VIDEOS_URL, json={'data': []}, status=200)

        adapter.authenticate()
        adapter.fetch_scheduled(creator)
        adapter.fetch_archived(creator)

        user_calls = [c for c in responses.calls if c.request.url.startswith(USERS_URL)]
        assert len(user_calls) == 1

    @responses.activate
    def test_unknown_user(self, adapter, creator):
        """Test an unknown login yields no records."""
        _add_token()
        responses.add(responses.GET, USERS_URL, json={'data': []}, status=200)

        adapter.authenticate()

        assert adapter.fetch_archived(creator) == []

    @responses.activate
    def test_server_error_propagates_as_transient(self, adapter, creator):
        """Test a 5xx from Helix surfaces as TransientApiError."""
        _add_token()
        responses.add(responses.GET, STREAMS_URL, body='oops', status=502)

        adapter.authenticate()

        with pytest.raises(TransientApiError):
            adapter.fetch_live(creator)

    def test_fetch_before_authenticate(self, adapter, creator):
        """Test calls made before authenticate() raise AuthError."""
        with pytest.raises(AuthError):
            adapter.fetch_live(creator)
