"""Persistence backends for the cache ledger."""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from storage.cache_ledger import CacheLedger

logger = logging.getLogger(__name__)


class CacheIoError(Exception):
    """Ledger could not be read or written."""


def write_json_atomic(path: Path, document: Any) -> None:
    """
    Write a JSON document by writing a temp file and renaming it into place.

    Args:
        path: Destination path
        document: JSON-serializable document

    Raises:
        OSError: If the file cannot be written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix='.tmp', dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(document, f, ensure_ascii=False, indent=2)
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise


class FileLedgerStore:
    """Stores the ledger document as a local JSON file."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Read the ledger document.

        Returns:
            Decoded document, or None if the file does not exist

        Raises:
            CacheIoError: If the file is unreadable or not valid JSON
        """
        if not self.path.exists():
            logger.info(f"No ledger at {self.path}, starting empty")
            return None

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise CacheIoError(f"Failed to read ledger {self.path}: {e}") from e

    def save(self, document: Dict[str, Any]) -> None:
        try:
            write_json_atomic(self.path, document)
        except (OSError, TypeError, ValueError) as e:
            raise CacheIoError(f"Failed to write ledger {self.path}: {e}") from e
        logger.info(f"Saved ledger to {self.path}")


class DynamoDBLedgerStore:
    """Stores the ledger document as a single item in a DynamoDB table."""

    KEY_NAME = 'ledger_id'

    def __init__(self, table_name: str, ledger_id: str = 'default'):
        """
        Initialize DynamoDB table reference.

        Args:
            table_name: Name of the DynamoDB table (hash key ``ledger_id``)
            ledger_id: Key of the ledger item
        """
        self.table_name = table_name
        self.ledger_id = ledger_id
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBLedgerStore for table: {table_name}")

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Read the ledger item.

        Returns:
            Ledger document, or None if the item does not exist

        Raises:
            CacheIoError: If the table cannot be read
        """
        try:
            response = self.table.get_item(Key={self.KEY_NAME: self.ledger_id})
        except (ClientError, BotoCoreError) as e:
            raise CacheIoError(f"Error reading ledger from {self.table_name}: {e}") from e

        item = response.get('Item')
        if item is None:
            logger.info(f"No ledger item '{self.ledger_id}' in {self.table_name}")
            return None

        return self._item_to_document(item)

    def save(self, document: Dict[str, Any]) -> None:
        """
        Replace the ledger item in one PutItem call.

        Raises:
            CacheIoError: If the item cannot be written
        """
        try:
            self.table.put_item(Item=self._document_to_item(document))
        except (ClientError, BotoCoreError) as e:
            raise CacheIoError(f"Error writing ledger to {self.table_name}: {e}") from e
        logger.info(f"Saved ledger item '{self.ledger_id}' to {self.table_name}")

    def _document_to_item(self, document: Dict[str, Any]) -> dict:
        item = {
            self.KEY_NAME: self.ledger_id,
            'seen_item_ids': list(document.get('seenItemIds') or []),
            'resolved_schedule_times': dict(document.get('resolvedScheduleTimes') or {}),
        }

        # Omit null attributes
        if document.get('lastRunAt'):
            item['last_run_at'] = document['lastRunAt']

        return item

    @staticmethod
    def _item_to_document(item: dict) -> Dict[str, Any]:
        return {
            'seenItemIds': list(item.get('seen_item_ids') or []),
            'resolvedScheduleTimes': dict(item.get('resolved_schedule_times') or {}),
            'lastRunAt': item.get('last_run_at'),
        }


class LedgerSession:
    """
    Load/save lifecycle for a cache ledger.

    Entering loads the ledger, falling back to an empty one when the stored
    document is missing, unreadable or corrupt. Leaving saves it, also when
    the block raised, so partial progress survives a fatal failure. A failed
    save is logged and kept in ``save_error`` rather than raised.
    """

    def __init__(self, store):
        self.store = store
        self.ledger: Optional[CacheLedger] = None
        self.save_error: Optional[CacheIoError] = None

    def __enter__(self) -> CacheLedger:
        try:
            document = self.store.load()
        except CacheIoError as e:
            logger.warning(f"Ledger unavailable, starting empty: {e}")
            document = None

        self.ledger = CacheLedger.from_document(document)
        return self.ledger

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        try:
            self.store.save(self.ledger.to_document())
        except CacheIoError as e:
            logger.warning(f"Ledger update not persisted: {e}")
            self.save_error = e
        return False
