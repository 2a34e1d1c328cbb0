"""Loader for the creator roster document."""
import json
import logging
from typing import List

from processor.models import Creator

logger = logging.getLogger(__name__)

# Accepted spellings for each roster field, first match wins
FIELD_ALIASES = {
    'creator_id': ('creatorId', 'name'),
    'display_name': ('displayName', 'name', 'creatorId'),
    'twitch_login': ('platformAIdentifier', 'twitchUserLogin'),
    'youtube_channel_id': ('platformBIdentifier', 'youtubeChannelId'),
    'avatar': ('avatarAssetRef', 'avatar'),
}


def load_roster(path: str) -> List[Creator]:
    """
    Load the ordered creator roster from a JSON file.

    Entries without a creator ID are skipped with a warning.

    Args:
        path: Path to the roster JSON (a list of objects)

    Returns:
        List of Creator objects in document order

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is not a JSON list
    """
    with open(path, 'r', encoding='utf-8') as f:
        document = json.load(f)

    if not isinstance(document, list):
        raise ValueError(f"Roster {path} must be a JSON list")

    creators = []
    for index, entry in enumerate(document):
        if not isinstance(entry, dict):
            logger.warning(f"Skipping roster entry {index}: not an object")
            continue

        fields = {
            name: _first(entry, aliases) for name, aliases in FIELD_ALIASES.items()
        }
        if not fields['creator_id']:
            logger.warning(f"Skipping roster entry {index}: missing creator id")
            continue

        creators.append(Creator(**fields))

    logger.info(f"Loaded {len(creators)} creators from {path}")
    return creators


def _first(entry: dict, keys) -> str:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ''
