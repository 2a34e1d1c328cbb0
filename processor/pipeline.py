"""Aggregation pipeline: fetch, normalize, deduplicate, window and group."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from platforms.errors import AuthError, PlatformError, UpstreamLogicError
from platforms.http_client import PlatformHttpClient
from platforms.twitch import TwitchAdapter
from platforms.youtube import YouTubeAdapter
from processor.deduplicator import EventDeduplicator
from processor.grouper import DayGrouper
from processor.models import (
    Creator,
    EventKind,
    FetchDiagnostic,
    Platform,
    PipelineConfig,
    RawRecord,
    RunResult,
)
from processor.normalizer import EventNormalizer
from processor.time_window import TimeWindowFilter, local_date, start_of_local_day
from storage.cache_ledger import CacheLedger

logger = logging.getLogger(__name__)

FetchTask = Tuple[Creator, Platform, EventKind]

_FETCH_METHODS = {
    EventKind.LIVE: 'fetch_live',
    EventKind.SCHEDULED: 'fetch_scheduled',
    EventKind.ARCHIVED: 'fetch_archived',
}


def build_adapters(
    config: PipelineConfig,
    ledger: CacheLedger,
    now: datetime
) -> Dict[Platform, object]:
    """
    Create both platform adapters around one shared HTTP client.

    Args:
        config: Pipeline configuration
        ledger: Cache ledger for schedule time resolution
        now: Run start time, used to bound the recent uploads query

    Returns:
        Mapping of platform to adapter
    """
    http = PlatformHttpClient(
        timeout=config.request_timeout,
        max_attempts=config.max_attempts
    )
    zone = ZoneInfo(config.time_zone)
    recent_since = start_of_local_day(
        local_date(now, zone) - timedelta(days=config.past_days), zone
    )

    return {
        Platform.TWITCH: TwitchAdapter(
            client_id=config.twitch_client_id,
            client_secret=config.twitch_client_secret,
            http=http,
            archive_page_size=config.archive_page_size
        ),
        Platform.YOUTUBE: YouTubeAdapter(
            api_key=config.youtube_api_key,
            http=http,
            ledger=ledger,
            recent_since=recent_since,
            page_size=config.search_page_size
        ),
    }


class AggregationPipeline:
    """Runs one aggregation pass over the roster."""

    def __init__(
        self,
        config: PipelineConfig,
        ledger: CacheLedger,
        adapters: Optional[Dict[Platform, object]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the pipeline.

        Args:
            config: Pipeline configuration
            ledger: Cache ledger for this run
            adapters: Platform adapters; built from config when omitted
            clock: Returns the current UTC time (injectable for tests)
        """
        self.config = config
        self.ledger = ledger
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._adapters = adapters

        self.normalizer = EventNormalizer(ledger=ledger)
        self.deduplicator = EventDeduplicator(
            time_zone=config.time_zone,
            tolerance_seconds=config.dedup_tolerance_seconds,
            ledger=ledger
        )
        self.window = TimeWindowFilter(
            time_zone=config.time_zone,
            past_days=config.past_days,
            future_days=config.future_days,
            future_months=config.future_months
        )
        self.grouper = DayGrouper(time_zone=config.time_zone)

    def run(self, creators: List[Creator]) -> RunResult:
        """
        Aggregate the roster into day groups.

        Args:
            creators: Roster in document order

        Returns:
            RunResult with day groups, per-call diagnostics and statistics

        Raises:
            AuthError: If any adapter cannot authenticate
        """
        now = self.clock()
        adapters = self._adapters
        if adapters is None:
            adapters = build_adapters(self.config, self.ledger, now)

        for platform, adapter in adapters.items():
            logger.info(f"Authenticating {platform.value} adapter")
            adapter.authenticate()

        tasks = self._plan_tasks(creators, adapters)
        logger.info(f"Running {len(tasks)} fetches for {len(creators)} creators")
        records, diagnostics = self._fetch_all(tasks, adapters)

        events = self.normalizer.normalize(records)
        unique = self.deduplicator.deduplicate(events)
        windowed = self.window.apply(unique, now)
        groups = self.grouper.group(windowed)

        new_ids = self.ledger.mark_seen(event.source_item_id for event in windowed)
        if diagnostics:
            logger.info("Keeping all seen item IDs since some fetches failed")
        else:
            self.ledger.retain_seen(event.source_item_id for event in events)
        self.ledger.prune_resolved(now, self.config.ledger_retention_days)
        self.ledger.mark_run(now)

        statistics = {
            'creators': len(creators),
            'fetches': len(tasks),
            'failed_fetches': len(diagnostics),
            'raw_records': len(records),
            'normalized_events': len(events),
            'unique_events': len(unique),
            'timeline_events': len(windowed),
            'days': len(groups),
        }
        logger.info(f"Aggregation finished: {statistics}")

        return RunResult(
            groups=groups,
            diagnostics=diagnostics,
            statistics=statistics,
            new_item_ids=sorted(new_ids)
        )

    @staticmethod
    def _plan_tasks(creators: List[Creator], adapters: Dict[Platform, object]) -> List[FetchTask]:
        tasks = []
        for creator in creators:
            for platform in adapters:
                if platform == Platform.TWITCH and not creator.twitch_login:
                    continue
                if platform == Platform.YOUTUBE and not creator.youtube_channel_id:
                    continue
                for kind in EventKind:
                    tasks.append((creator, platform, kind))
        return tasks

    def _fetch_all(
        self,
        tasks: List[FetchTask],
        adapters: Dict[Platform, object]
    ) -> Tuple[List[RawRecord], List[FetchDiagnostic]]:
        """
        Run every fetch on a bounded thread pool.

        Results are reassembled in task order, so the output does not depend
        on completion order.
        """
        results: Dict[int, List[RawRecord]] = {}
        failures: Dict[int, FetchDiagnostic] = {}

        if not tasks:
            return [], []

        with ThreadPoolExecutor(max_workers=max(1, self.config.max_concurrency)) as executor:
            futures = {
                executor.submit(self._fetch_one, task, adapters[task[1]]): index
                for index, task in enumerate(tasks)
            }
            for future in as_completed(futures):
                index = futures[future]
                records, diagnostic = future.result()
                results[index] = records
                if diagnostic is not None:
                    failures[index] = diagnostic

        records = [record for index in sorted(results) for record in results[index]]
        diagnostics = [failures[index] for index in sorted(failures)]
        return records, diagnostics

    def _fetch_one(
        self,
        task: FetchTask,
        adapter
    ) -> Tuple[List[RawRecord], Optional[FetchDiagnostic]]:
        """
        Call one adapter method, turning platform errors into a diagnostic.

        AuthError is not caught; it ends the run.
        """
        creator, platform, kind = task
        method = getattr(adapter, _FETCH_METHODS[kind])

        try:
            return list(method(creator)), None

        except AuthError:
            raise

        except PlatformError as e:
            logger.warning(
                f"{platform.value} {kind.value} fetch failed for "
                f"'{creator.creator_id}': {e}",
                extra={'error_type': type(e).__name__}
            )
            return [], self._diagnostic(task, type(e).__name__, str(e))

        except Exception as e:
            logger.error(
                f"Unexpected error in {platform.value} {kind.value} fetch for "
                f"'{creator.creator_id}': {e}",
                exc_info=True
            )
            return [], self._diagnostic(task, UpstreamLogicError.__name__, str(e))

    @staticmethod
    def _diagnostic(task: FetchTask, error_type: str, message: str) -> FetchDiagnostic:
        creator, platform, kind = task
        return FetchDiagnostic(
            creator_id=creator.creator_id,
            platform=platform,
            kind=kind,
            error_type=error_type,
            message=message
        )
