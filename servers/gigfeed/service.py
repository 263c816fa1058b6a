"""
Trigger surface for collection runs.

A scheduler or a request router calls these:
- start(): begin a run in the background unless one holds the lock
- run_now(): run to completion in the caller (scheduled trigger)
- status(): last persisted status message
- invalidate(): drop cached events for some sources
- purge_images(): empty the image cache
- cache_image(): cache a single image URL
"""

import asyncio
import traceback
from typing import Any, Awaitable, Iterable, Optional, TypeVar

import structlog

from .cache.event_cache import EventCache
from .cache.image_cache import ImageCache
from .collector import Collector
from .lock import AdvisoryLock, BlobLockBackend, TableLockBackend, new_owner_token
from .models import CachedImage, Feed, TriggerResult
from .sources import SourceRegistry, build_registry
from .status import StatusBoard
from .storage import get_blob_store, get_table_store

logger = structlog.get_logger()

T = TypeVar("T")

IDLE = "idle"
STARTED = "started"
IN_PROGRESS = "already in progress"


class CollectService:
    """Starts, guards and reports on collection runs."""

    def __init__(
        self,
        collector: Collector,
        lock: AdvisoryLock,
        status: StatusBoard,
        event_cache: EventCache,
        image_cache: ImageCache,
        owner: Optional[str] = None,
    ):
        self.collector = collector
        self.lock = lock
        self.status_board = status
        self.event_cache = event_cache
        self.image_cache = image_cache
        self.owner = owner or new_owner_token()
        self.last_error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None
        self._busy = False

    async def _claim(self) -> bool:
        """Take the in-process guard, then the shared lock.

        The guard is set before the first await; the shared lock alone lets
        its own owner re-acquire.
        """
        if self._busy:
            logger.info("collect_already_running", owner=self.owner, local=True)
            return False
        self._busy = True
        acquired = False
        try:
            acquired = await self.lock.acquire(self.owner)
        finally:
            if not acquired:
                self._busy = False
        if not acquired:
            logger.info("collect_already_running", owner=self.owner)
        return acquired

    async def _unclaim(self) -> None:
        try:
            await self.lock.release(self.owner)
        finally:
            self._busy = False

    async def _keep_alive(self, stop: asyncio.Event) -> None:
        """Renew the lock every third of the staleness window until stopped."""
        interval = self.lock.staleness_ms / 3000
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                try:
                    await self.lock.refresh(self.owner)
                except Exception as e:
                    logger.warning("lock_refresh_failed", owner=self.owner, error=str(e))

    async def _with_heartbeat(self, work: Awaitable[T]) -> T:
        """Await work while keeping the lock fresh."""
        stop = asyncio.Event()
        heartbeat = asyncio.create_task(self._keep_alive(stop))
        try:
            return await work
        finally:
            # Not cancelled: a refresh still in flight must land before release
            stop.set()
            await heartbeat

    async def _set_status(self, message: str) -> None:
        try:
            await self.status_board.set(message)
        except Exception as e:
            logger.warning("status_update_failed", error=str(e))

    async def start(self) -> TriggerResult:
        """Begin a run in the background and return straight away."""
        if not await self._claim():
            return TriggerResult(status=IN_PROGRESS)

        self.last_error = None
        await self._set_status("in progress")
        self._task = asyncio.create_task(self._run_locked())
        logger.info("collect_triggered", owner=self.owner)
        return TriggerResult(status=STARTED)

    async def _run_locked(self) -> None:
        """Background body of start(): run, then always release the lock."""
        try:
            await self._with_heartbeat(self.collector.run())
        except Exception as e:
            self.last_error = e
            logger.error("collect_failed", error=str(e), exc_info=True)
            await self._record_failure(e)
        finally:
            await self._unclaim()

    async def _record_failure(self, error: Exception) -> None:
        detail = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        await self._set_status(detail)

    async def wait(self) -> None:
        """Wait for a run begun by start() to finish."""
        if self._task is not None:
            await self._task

    async def run_now(self) -> Optional[Feed]:
        """
        Run a collection in the caller, guarded by the lock.

        Returns:
            The published feed, or None if another run holds the lock

        Raises:
            FeedPersistError: If the feed could not be written
        """
        if not await self._claim():
            return None
        try:
            await self._set_status("in progress")
            return await self._with_heartbeat(self.collector.run())
        except Exception as e:
            self.last_error = e
            await self._record_failure(e)
            raise
        finally:
            await self._unclaim()

    async def status(self) -> TriggerResult:
        """Last persisted status message."""
        message = await self.status_board.get()
        return TriggerResult(status=message or IDLE)

    async def invalidate(self, source_ids: Iterable[str]) -> TriggerResult:
        """Drop cached events for the given sources."""
        ids = [s.strip() for s in source_ids if s and s.strip()]
        for source_id in ids:
            await self.event_cache.invalidate(source_id)
        message = f"Invalidated cache for: {', '.join(ids)}"
        await self.status_board.set(message)
        return TriggerResult(status=message)

    async def purge_images(self) -> TriggerResult:
        """Empty the image cache."""
        namespace = await self.image_cache.purge()
        message = f"Done purge {namespace}"
        await self.status_board.set(message)
        return TriggerResult(status=message)

    async def cache_image(self, url: str) -> CachedImage:
        """Cache one image outside a full run."""
        if not await self._claim():
            return CachedImage(url=url, error=IN_PROGRESS)
        try:
            result = await self._with_heartbeat(self.image_cache.get_or_fetch(url))
            await self._set_status("Done " + result.model_dump_json())
            return result
        finally:
            await self._unclaim()


def build_service(
    config: dict[str, Any],
    registry: Optional[SourceRegistry] = None,
) -> CollectService:
    """
    Wire a CollectService from configuration.

    Args:
        config: Config dict (see config.settings)
        registry: Source handlers; built from config["sources"] if omitted

    Returns:
        Ready-to-use CollectService
    """
    admin_store = get_blob_store("admin", config)
    feed_store = get_blob_store("feed", config)
    events_store = get_blob_store("events", config)
    image_store = get_blob_store("images", config)

    collect = config["collect"]
    images = config["images"]
    lock_config = config["lock"]

    if lock_config["backend"] == "table":
        backend = TableLockBackend(get_table_store(config), lock_config["key"])
    else:
        backend = BlobLockBackend(admin_store, lock_config["key"])
    lock = AdvisoryLock(backend, staleness_ms=lock_config["staleness_ms"])

    status = StatusBoard(admin_store, collect["status_key"])
    event_cache = EventCache(events_store)
    image_cache = ImageCache(
        image_store,
        width=images["width"],
        max_bytes=images["max_bytes"],
        max_dimension=images["max_dimension"],
        timeout=images["timeout"],
        resolve_dns=images["resolve_dns"],
    )

    collector = Collector(
        registry=registry if registry is not None else build_registry(config),
        event_cache=event_cache,
        image_cache=image_cache,
        feed_store=feed_store,
        status=status,
        source_timeout=collect["source_timeout"],
        feed_key=collect["feed_key"],
        diagnostics_key=collect["diagnostics_key"],
        image_prefix=collect["image_prefix"],
        platform=config.get("platform", "local"),
    )

    return CollectService(collector, lock, status, event_cache, image_cache)
