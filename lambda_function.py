"""AWS Lambda handler for the stream schedule aggregator."""
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from platforms.errors import AuthError
from processor.models import PipelineConfig, RunResult
from processor.pipeline import AggregationPipeline
from storage.ledger_store import (
    DynamoDBLedgerStore,
    FileLedgerStore,
    LedgerSession,
    write_json_atomic,
)
from storage.roster_loader import load_roster


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        error_type = getattr(record, 'error_type', None)
        if error_type:
            log_data['error_type'] = error_type

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Invalid integer for {name}: {raw!r}, using {default}"
        )
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Invalid number for {name}: {raw!r}, using {default}"
        )
        return default


def load_config() -> PipelineConfig:
    """Build the pipeline configuration from environment variables."""
    defaults = PipelineConfig()
    return PipelineConfig(
        twitch_client_id=os.environ.get('TWITCH_CLIENT_ID', ''),
        twitch_client_secret=os.environ.get('TWITCH_CLIENT_SECRET', ''),
        youtube_api_key=os.environ.get('YT_API_KEY', ''),
        time_zone=os.environ.get('TIME_ZONE', defaults.time_zone),
        past_days=_env_int('PAST_DAYS', defaults.past_days),
        future_days=_env_int('FUTURE_DAYS', defaults.future_days),
        future_months=_env_int('FUTURE_MONTHS', None),
        dedup_tolerance_seconds=_env_int(
            'DEDUP_TOLERANCE_SECONDS', defaults.dedup_tolerance_seconds
        ),
        max_concurrency=_env_int('MAX_CONCURRENCY', defaults.max_concurrency),
        request_timeout=_env_float('TIMEOUT_SECONDS', defaults.request_timeout),
        max_attempts=_env_int('MAX_ATTEMPTS', defaults.max_attempts)
    )


def build_ledger_store():
    """Use DynamoDB when LEDGER_TABLE is set, a local JSON file otherwise."""
    table_name = os.environ.get('LEDGER_TABLE')
    if table_name:
        return DynamoDBLedgerStore(table_name=table_name)
    return FileLedgerStore(os.environ.get('LEDGER_PATH', 'data/cache_ledger.json'))


def build_timeline_document(result: RunResult, config: PipelineConfig) -> Dict[str, Any]:
    """Timeline document consumed by the renderer."""
    return {
        'status': 'ok',
        'generated_at': datetime.now(timezone.utc).isoformat(),
        'time_zone': config.time_zone,
        'days': [group.to_dict() for group in result.groups],
        'diagnostics': [diagnostic.to_dict() for diagnostic in result.diagnostics],
    }


def build_diagnostic_document(error: Exception) -> Dict[str, Any]:
    """Document emitted in place of a timeline when no data could be gathered."""
    return {
        'status': 'error',
        'generated_at': datetime.now(timezone.utc).isoformat(),
        'error_type': type(error).__name__,
        'message': str(error),
    }


def _error_response(message: str, error: Exception, start_time: float, **extra) -> Dict[str, Any]:
    duration = time.time() - start_time
    body = {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__,
        'duration_seconds': round(duration, 2)
    }
    body.update(extra)
    return {'statusCode': 500, 'body': json.dumps(body, ensure_ascii=False)}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for the stream schedule aggregator.

    Args:
        event: EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body carrying the timeline
        or the failure details
    """
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    config = load_config()
    roster_path = os.environ.get('ROSTER_PATH', 'data/streamers.json')
    timeline_path = os.environ.get('TIMELINE_PATH', 'docs/timeline.json')
    logger.info(
        "Lambda execution started",
        extra={
            'roster_path': roster_path,
            'timeline_path': timeline_path,
            'past_days': config.past_days,
            'future_days': config.future_days
        }
    )

    try:
        return _aggregate(config, roster_path, timeline_path, start_time)

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        _write_diagnostic(timeline_path, e)
        return _error_response('Aggregation failed', e, start_time)


def _aggregate(
    config: PipelineConfig,
    roster_path: str,
    timeline_path: str,
    start_time: float
) -> Dict[str, Any]:
    logger = logging.getLogger(__name__)

    try:
        creators = load_roster(roster_path)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load roster: {e}", exc_info=True)
        _write_diagnostic(timeline_path, e)
        return _error_response('Failed to load roster', e, start_time)

    session = LedgerSession(build_ledger_store())
    try:
        with session as ledger:
            pipeline = AggregationPipeline(config=config, ledger=ledger)
            result = pipeline.run(creators)
    except AuthError as e:
        logger.error(
            f"Authentication failed, no data could be fetched: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        _write_diagnostic(timeline_path, e)
        return _error_response('Authentication failed', e, start_time)

    warnings = []
    if session.save_error is not None:
        warnings.append(str(session.save_error))

    document = build_timeline_document(result, config)
    try:
        write_json_atomic(timeline_path, document)
    except OSError as e:
        logger.error(f"Failed to write timeline: {e}", exc_info=True)
        return _error_response('Failed to write timeline', e, start_time,
                               warnings=warnings)

    duration = time.time() - start_time
    logger.info(
        "Lambda execution completed successfully",
        extra={
            'duration_seconds': round(duration, 2),
            'failed_fetches': len(result.diagnostics),
            'new_items': len(result.new_item_ids)
        }
    )

    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': 'Timeline updated',
            'statistics': dict(result.statistics, duration_seconds=round(duration, 2)),
            'new_item_ids': result.new_item_ids,
            'warnings': warnings,
            'timeline': document
        }, ensure_ascii=False)
    }


def _write_diagnostic(timeline_path: str, error: Exception) -> None:
    try:
        write_json_atomic(timeline_path, build_diagnostic_document(error))
    except OSError as e:
        logging.getLogger(__name__).error(f"Failed to write diagnostic document: {e}")
