"""Unit tests for CacheLedger."""
import threading
from datetime import datetime, timedelta, timezone

from storage.cache_ledger import CacheLedger, format_instant, parse_instant

T0 = datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc)


class TestCacheLedger:
    """Test cases for CacheLedger class."""

    def test_document_round_trip(self):
        """Test to_document/from_document preserve seen IDs and resolved times."""
        ledger = CacheLedger(
            seen_item_ids={'a', 'b'},
            resolved_schedule_times={
                'up1': T0,
                'up2': T0 + timedelta(hours=1, microseconds=500),
            },
            last_run_at=T0
        )

        restored = CacheLedger.from_document(ledger.to_document())

        assert restored.seen_item_ids == {'a', 'b'}
        assert restored.resolved_schedule_times == ledger.resolved_schedule_times
        assert restored.last_run_at == T0

    def test_document_layout(self):
        ledger = CacheLedger(
            seen_item_ids=['b', 'a'],
            resolved_schedule_times={'up1': T0},
            last_run_at=T0
        )

        assert ledger.to_document() == {
            'seenItemIds': ['a', 'b'],
            'resolvedScheduleTimes': {'up1': '2024-01-10T10:00:00Z'},
            'lastRunAt': '2024-01-10T10:00:00Z',
        }

    def test_from_document_missing_or_wrong_type(self):
        """Test absent or non-object documents produce an empty ledger."""
        for document in (None, [], 'garbage', 42):
            ledger = CacheLedger.from_document(document)
            assert ledger.seen_item_ids == set()
            assert ledger.resolved_schedule_times == {}
            assert ledger.last_run_at is None

    def test_from_document_skips_malformed_entries(self):
        ledger = CacheLedger.from_document({
            'seenItemIds': ['a', 3, None],
            'resolvedScheduleTimes': {'up1': '2024-01-10T10:00:00Z', 'up2': 'soon'},
            'lastRunAt': 'not a date',
        })

        assert ledger.seen_item_ids == {'a'}
        assert list(ledger.resolved_schedule_times) == ['up1']
        assert ledger.last_run_at is None

    def test_mark_seen_returns_new_ids(self):
        ledger = CacheLedger(seen_item_ids={'a'})

        assert ledger.mark_seen(['a', 'b', 'c']) == {'b', 'c'}
        assert ledger.mark_seen(['b']) == set()
        assert ledger.has_seen('c')

    def test_prune_resolved(self):
        """Test resolved times older than the retention period are dropped."""
        ledger = CacheLedger(resolved_schedule_times={
            'old': T0 - timedelta(days=8),
            'recent': T0 - timedelta(days=1),
            'future': T0 + timedelta(days=1),
        })

        removed = ledger.prune_resolved(T0, retention_days=7)

        assert removed == 1
        assert set(ledger.resolved_schedule_times) == {'recent', 'future'}

    def test_retain_seen(self):
        """Test seen IDs absent from the active set are forgotten."""
        ledger = CacheLedger(seen_item_ids={'a', 'b', 'gone'})

        removed = ledger.retain_seen(['a', 'b', 'c'])

        assert removed == 1
        assert ledger.seen_item_ids == {'a', 'b'}
        assert ledger.to_document()['seenItemIds'] == ['a', 'b']

    def test_concurrent_updates(self):
        """Test concurrent writers do not lose updates."""
        ledger = CacheLedger()

        def worker(offset):
            for i in range(200):
                ledger.mark_seen([f"{offset}-{i}"])
                ledger.record_resolved_time(f"{offset}-{i}", T0)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(ledger.seen_item_ids) == 1600
        assert len(ledger.resolved_schedule_times) == 1600


def test_parse_instant_variants():
    assert parse_instant('2024-01-10T10:00:00Z') == T0
    assert parse_instant('2024-01-10T19:00:00+09:00') == T0
    assert parse_instant('2024-01-10T10:00:00') == T0
    assert parse_instant('') is None
    assert parse_instant(None) is None
    assert parse_instant('tomorrow') is None


def test_format_instant():
    assert format_instant(T0) == '2024-01-10T10:00:00Z'
