"""Unit tests for DayGrouper."""
from datetime import date, datetime, timezone

from processor.grouper import DayGrouper
from processor.models import Event, EventKind, Platform


def make_event(occurs_at, platform=Platform.TWITCH, creator_id='alice', item_id='x'):
    return Event(
        platform=platform,
        creator_id=creator_id,
        kind=EventKind.ARCHIVED,
        title='t',
        permalink='',
        occurs_at=occurs_at,
        thumbnail_url=None,
        source_item_id=item_id
    )


def test_groups_by_local_day_ascending():
    """Test events are bucketed by Tokyo date and groups sorted ascending."""
    grouper = DayGrouper(time_zone='Asia/Tokyo')
    late_utc = make_event(datetime(2024, 1, 10, 16, 0, tzinfo=timezone.utc), item_id='late')
    early = make_event(datetime(2024, 1, 10, 1, 0, tzinfo=timezone.utc), item_id='early')

    groups = grouper.group([late_utc, early])

    assert [g.local_date for g in groups] == [date(2024, 1, 10), date(2024, 1, 11)]
    assert [e.source_item_id for e in groups[0].events] == ['early']
    assert [e.source_item_id for e in groups[1].events] == ['late']


def test_ordering_within_group():
    """Test events sort by time, then platform, then creator."""
    grouper = DayGrouper(time_zone='Asia/Tokyo')
    t = datetime(2024, 1, 10, 3, 0, tzinfo=timezone.utc)
    events = [
        make_event(t, Platform.YOUTUBE, 'alice', 'yt-alice'),
        make_event(t, Platform.TWITCH, 'bob', 'tw-bob'),
        make_event(t, Platform.TWITCH, 'alice', 'tw-alice'),
        make_event(datetime(2024, 1, 10, 2, 0, tzinfo=timezone.utc), Platform.YOUTUBE, 'zed', 'first'),
    ]

    groups = grouper.group(events)

    assert len(groups) == 1
    assert [e.source_item_id for e in groups[0].events] == [
        'first', 'tw-alice', 'tw-bob', 'yt-alice'
    ]


def test_same_output_for_any_input_order():
    grouper = DayGrouper()
    t = datetime(2024, 1, 10, 3, 0, tzinfo=timezone.utc)
    events = [
        make_event(t, Platform.YOUTUBE, 'alice', 'a'),
        make_event(t, Platform.TWITCH, 'bob', 'b'),
        make_event(datetime(2024, 1, 12, 3, 0, tzinfo=timezone.utc), item_id='c'),
    ]

    assert grouper.group(events) == grouper.group(list(reversed(events)))


def test_empty():
    assert DayGrouper().group([]) == []


def test_to_dict():
    grouper = DayGrouper()
    groups = grouper.group([make_event(datetime(2024, 1, 10, 3, 0, tzinfo=timezone.utc))])

    document = groups[0].to_dict()

    assert document['date'] == '2024-01-10'
    assert document['events'][0]['occurs_at'] == '2024-01-10T03:00:00+00:00'
    assert document['events'][0]['platform'] == 'twitch'
    assert document['events'][0]['kind'] == 'archived'
