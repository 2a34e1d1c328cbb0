"""Data models for stream event aggregation."""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Platform(str, Enum):
    """Streaming platforms the aggregator reads from."""
    TWITCH = 'twitch'
    YOUTUBE = 'youtube'


class EventKind(str, Enum):
    """Lifecycle state of a broadcast record."""
    LIVE = 'live'
    SCHEDULED = 'scheduled'
    ARCHIVED = 'archived'

    @property
    def priority(self) -> int:
        """Lower value wins when two records describe the same broadcast."""
        return _KIND_PRIORITY[self]


_KIND_PRIORITY = {
    EventKind.LIVE: 0,
    EventKind.SCHEDULED: 1,
    EventKind.ARCHIVED: 2,
}


@dataclass(frozen=True)
class Creator:
    """Roster entry for a tracked content creator."""
    creator_id: str
    display_name: str
    twitch_login: str = ''
    youtube_channel_id: str = ''
    avatar: str = ''


@dataclass(frozen=True)
class RawRecord:
    """Platform-native record as returned by a platform adapter."""
    platform: Platform
    kind: EventKind
    creator_id: str
    payload: Dict[str, Any]


@dataclass(frozen=True)
class Event:
    """Canonical broadcast event.

    ``occurs_at`` is always a timezone-aware UTC datetime. Instances are
    never mutated; corrections are made with ``dataclasses.replace``.
    """
    platform: Platform
    creator_id: str
    kind: EventKind
    title: str
    permalink: str
    occurs_at: datetime
    thumbnail_url: Optional[str]
    source_item_id: str
    # ID of the broadcast this record derives from (a Twitch VOD's stream_id)
    related_item_id: str = ''

    def sort_key(self) -> tuple:
        return (
            self.occurs_at,
            self.platform.value,
            self.creator_id,
            self.kind.priority,
            self.source_item_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'platform': self.platform.value,
            'creator_id': self.creator_id,
            'kind': self.kind.value,
            'title': self.title,
            'permalink': self.permalink,
            'occurs_at': self.occurs_at.isoformat(),
            'thumbnail_url': self.thumbnail_url,
            'source_item_id': self.source_item_id,
        }


@dataclass(frozen=True)
class DayGroup:
    """Events falling on one local calendar day."""
    local_date: date
    events: Tuple[Event, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.local_date.isoformat(),
            'events': [event.to_dict() for event in self.events],
        }


@dataclass(frozen=True)
class FetchDiagnostic:
    """A platform call that failed and contributed no records."""
    creator_id: str
    platform: Platform
    kind: EventKind
    error_type: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            'creator_id': self.creator_id,
            'platform': self.platform.value,
            'kind': self.kind.value,
            'error_type': self.error_type,
            'message': self.message,
        }


@dataclass
class PipelineConfig:
    """Settings for one aggregation run."""
    twitch_client_id: str = ''
    twitch_client_secret: str = ''
    youtube_api_key: str = ''
    time_zone: str = 'Asia/Tokyo'
    past_days: int = 1
    future_days: int = 30
    future_months: Optional[int] = None
    dedup_tolerance_seconds: int = 60
    max_concurrency: int = 6
    request_timeout: float = 10.0
    max_attempts: int = 2
    archive_page_size: int = 20
    search_page_size: int = 10
    ledger_retention_days: int = 7


@dataclass
class RunResult:
    """Outcome of an aggregation run."""
    groups: List[DayGroup]
    diagnostics: List[FetchDiagnostic] = field(default_factory=list)
    statistics: Dict[str, int] = field(default_factory=dict)
    new_item_ids: List[str] = field(default_factory=list)
