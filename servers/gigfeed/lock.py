"""
Advisory lock serializing collection runs across invocations.

The lock is a text record "<epoch-ms> <owner>" kept in a blob or table
store. A record is held only while its timestamp is younger than the
staleness window; older records are treated as free.

This is not a transactional lock. acquire() reads then writes, so two
callers racing inside that gap can both believe they won. A duplicate
run only wastes work: the feed is overwritten whole and event cache
writes are idempotent per source.
"""

import os
import time
import uuid
from typing import Callable, Optional

import structlog

from .storage.base import BlobStore, TableStore

logger = structlog.get_logger()

DEFAULT_STALENESS_MS = 3000
CLEARED_RECORD = "0 0"
LOCK_PARTITION = "locks"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_owner_token() -> str:
    """Token unique to this process and instance."""
    return f"{os.getpid()}-{uuid.uuid4().hex[:8]}"


class BlobLockBackend:
    """Keeps the lock record under a key in a blob store."""

    def __init__(self, store: BlobStore, key: str = "collect-lock"):
        self.store = store
        self.key = key

    async def read(self) -> str:
        return await self.store.get(self.key)

    async def write(self, record: str) -> None:
        await self.store.put(self.key, "text/plain", record)


class TableLockBackend:
    """Keeps the lock record in one entity of a table store."""

    def __init__(self, table: TableStore, name: str = "collect-lock"):
        self.table = table
        self.name = name

    async def read(self) -> str:
        entity = await self.table.get_entity(LOCK_PARTITION, self.name)
        return (entity or {}).get("record", "")

    async def write(self, record: str) -> None:
        await self.table.upsert_entity(
            {"partitionKey": LOCK_PARTITION, "rowKey": self.name, "record": record}
        )


class AdvisoryLock:
    """Best-effort mutual exclusion between collection runs."""

    def __init__(
        self,
        backend: BlobLockBackend | TableLockBackend,
        staleness_ms: int = DEFAULT_STALENESS_MS,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Args:
            backend: Where the lock record lives
            staleness_ms: Age after which a record no longer holds the lock
            clock: Current time in epoch milliseconds
        """
        self.backend = backend
        self.staleness_ms = staleness_ms
        self.clock = clock

    async def _read(self) -> tuple[int, Optional[str]]:
        """Return (timestamp, owner) of the current record; (0, None) if absent or garbled."""
        parts = (await self.backend.read()).split(" ", 1)
        if len(parts) != 2:
            return 0, None
        try:
            return int(parts[0]), parts[1]
        except ValueError:
            return 0, None

    def _is_fresh(self, stamp: int) -> bool:
        return stamp > self.clock() - self.staleness_ms

    async def acquire(self, owner: str) -> bool:
        """
        Try to take the lock for owner.

        Returns:
            True if owner holds the lock after the attempt
        """
        stamp, holder = await self._read()
        if holder is None or not self._is_fresh(stamp):
            await self.backend.write(f"{self.clock()} {owner}")
        elif holder != owner:
            logger.info("lock_busy", holder=holder, owner=owner)

        held = await self.is_held(owner)
        if held:
            logger.debug("lock_acquired", owner=owner)
        return held

    async def release(self, owner: str) -> None:
        """Clear the lock if owner holds it; otherwise do nothing."""
        stamp, holder = await self._read()
        if holder == owner and self._is_fresh(stamp):
            await self.backend.write(CLEARED_RECORD)
            logger.debug("lock_released", owner=owner)

    async def refresh(self, owner: str) -> bool:
        """Renew the timestamp of a lock held by owner."""
        stamp, holder = await self._read()
        if holder != owner or not self._is_fresh(stamp):
            return False
        await self.backend.write(f"{self.clock()} {owner}")
        return True

    async def is_held(self, owner: str) -> bool:
        """Re-read the record and check owner holds a fresh lock."""
        stamp, holder = await self._read()
        return holder == owner and self._is_fresh(stamp)
