"""
Per-source cache of the last non-empty event list.

Used only as a fallback when a fresh fetch fails or comes back empty.
An empty list is never written, so a bad scrape cannot erase the last
good result.
"""

import re
import time
from typing import Optional, Sequence

import structlog
from pydantic import ValidationError

from ..models import EventCacheEntry, Show
from ..storage.base import BlobStore

logger = structlog.get_logger()

SOURCE_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,100}")
KEY_PREFIX = "cache-"
KEY_SUFFIX = ".json"


def validate_source_id(source_id: str) -> str:
    """Check a source id is safe to embed in a storage key."""
    if not isinstance(source_id, str) or not SOURCE_ID_PATTERN.fullmatch(source_id):
        raise ValueError(
            f"Invalid source id {source_id!r}: must be alphanumeric with dash/underscore (max 100 chars)"
        )
    return source_id


class EventCache:
    """Last good event list per source, stored as cache-<source>.json."""

    def __init__(self, store: BlobStore):
        self.store = store

    @staticmethod
    def cache_key(source_id: str) -> str:
        return f"{KEY_PREFIX}{validate_source_id(source_id)}{KEY_SUFFIX}"

    async def get(self, source_id: str) -> Optional[list[Show]]:
        """Return the cached events for a source, or None if there are none."""
        key = self.cache_key(source_id)
        content = await self.store.get(key)
        if not content:
            return None
        try:
            entry = EventCacheEntry.model_validate_json(content)
        except ValidationError as e:
            logger.warning("event_cache_unreadable", source=source_id, error=str(e))
            return None
        return entry.events or None

    async def set(self, source_id: str, events: Sequence[Show]) -> bool:
        """
        Store events for a source.

        Returns:
            True if written; False for an empty list or a storage error
        """
        if not events:
            return False

        key = self.cache_key(source_id)
        entry = EventCacheEntry(
            events=list(events),
            cached=int(time.time() * 1000),
            count=len(events),
        )
        try:
            await self.store.put(key, "application/json", entry.model_dump_json(indent=2))
        except Exception as e:
            logger.warning("event_cache_write_failed", source=source_id, error=str(e))
            return False
        logger.debug("event_cache_written", source=source_id, count=len(events))
        return True

    async def invalidate(self, source_id: str) -> None:
        """Forget the cached events for a source."""
        key = self.cache_key(source_id)
        try:
            await self.store.delete(key)
        except Exception as e:
            logger.warning("event_cache_invalidate_failed", source=source_id, error=str(e))
            return
        logger.info("event_cache_invalidated", source=source_id)

    async def purge_all(self) -> int:
        """Forget every source's cached events; returns how many were removed."""
        keys = [k for k in await self.store.list_names(KEY_PREFIX) if k.endswith(KEY_SUFFIX)]
        for key in keys:
            await self.store.delete(key)
        logger.info("event_cache_purged", removed=len(keys))
        return len(keys)
