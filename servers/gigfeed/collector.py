"""
Collection orchestrator.

One run:
1. Fetch every source concurrently, falling back to the event cache when a
   source fails, times out or comes back empty
2. Merge, sort and drop adjacent duplicates
3. Count shows per category
4. Swap each image URL for its cached copy, one show at a time
5. Write the feed and the run diagnostics

A failing source never stops the run. Only a failed feed write is fatal.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from .cache.event_cache import EventCache
from .cache.image_cache import ImageCache
from .dedup import deduplicate, tally_categories
from .lock import now_ms
from .models import Feed, RunDiagnostics, Show, SourceOutcome
from .resilience.health import HealthMonitor
from .sources.registry import RawRecord, SourceRegistry
from .status import StatusBoard
from .storage.base import BlobStore

logger = structlog.get_logger()

DEFAULT_SOURCE_TIMEOUT = 120.0


class FeedPersistError(Exception):
    """Raised when the assembled feed cannot be written."""
    pass


@dataclass
class RunContext:
    """State belonging to a single run."""

    started: int
    to_do: dict[str, bool]
    faults: list[str] = field(default_factory=list)
    outcomes: list[SourceOutcome] = field(default_factory=list)
    image_failures: list[str] = field(default_factory=list)
    images_cached: int = 0
    images_reused: int = 0
    health: HealthMonitor = field(default_factory=HealthMonitor)

    def fault(self, message: str) -> None:
        logger.warning("collect_fault", fault=message)
        self.faults.append(message)

    def done(self, source_id: str) -> None:
        self.to_do.pop(source_id, None)

    def remaining(self) -> str:
        return " ".join(self.to_do)


class Collector:
    """Runs collections from a source registry into a feed document."""

    def __init__(
        self,
        registry: SourceRegistry,
        event_cache: EventCache,
        image_cache: ImageCache,
        feed_store: BlobStore,
        status: StatusBoard,
        source_timeout: float = DEFAULT_SOURCE_TIMEOUT,
        feed_key: str = "events.json",
        diagnostics_key: str = "diagnostics.json",
        image_prefix: str = "/pix/",
        platform: str = "local",
        clock: Callable[[], int] = now_ms,
    ):
        self.registry = registry
        self.event_cache = event_cache
        self.image_cache = image_cache
        self.feed_store = feed_store
        self.status = status
        self.source_timeout = source_timeout
        self.feed_key = feed_key
        self.diagnostics_key = diagnostics_key
        self.image_prefix = image_prefix
        self.platform = platform
        self.clock = clock

    async def run(self) -> Feed:
        """
        Collect from every source and publish the feed.

        Returns:
            The feed as written

        Raises:
            FeedPersistError: If the feed could not be written
        """
        source_ids = self.registry.ids()
        ctx = RunContext(started=self.clock(), to_do={sid: True for sid in source_ids})
        logger.info("collect_started", sources=len(source_ids))
        await self._progress(f"Remaining sources: {ctx.remaining()}")

        # Every branch handles its own failures, so gather never raises here
        results = await asyncio.gather(*(self._collect_source(sid, ctx) for sid in source_ids))
        shows = [show for result in results for show in result]

        merged = deduplicate(shows)
        categories = tally_categories(merged.shows)
        await self._progress(
            f"Merged {merged.original_count} shows into {len(merged.shows)}"
        )

        await self._cache_images(merged.shows, ctx)

        feed = Feed(
            promoters=self.registry.labels(),
            categories=categories,
            shows=merged.shows,
            to_do=list(ctx.to_do),
            faults=list(ctx.faults),
            date=self.clock(),
            platform=self.platform,
        )
        await self._persist(feed)

        diagnostics = RunDiagnostics(
            started=ctx.started,
            finished=self.clock(),
            sources=ctx.outcomes,
            image_failures=ctx.image_failures,
            images_cached=ctx.images_cached,
            images_reused=ctx.images_reused,
            original_count=merged.original_count,
            duplicates_removed=merged.duplicates_removed,
            dedup_rate=merged.dedup_rate,
            unhealthy=ctx.health.get_unhealthy_sources(),
            health=ctx.health.get_status(),
        )
        await self._persist_diagnostics(diagnostics)

        logger.info(
            "collect_finished",
            shows=len(feed.shows),
            duplicates_removed=merged.duplicates_removed,
            unhealthy=diagnostics.unhealthy,
            faults=len(feed.faults),
            outstanding=feed.to_do,
        )
        await self._progress("Done. " + "\n".join(ctx.faults))
        return feed

    async def _collect_source(self, source_id: str, ctx: RunContext) -> list[Show]:
        """Fetch one source, applying the event cache fallback."""
        try:
            raw = await asyncio.wait_for(self.registry.invoke(source_id), timeout=self.source_timeout)
            shows = self._to_shows(source_id, raw)
        except Exception as e:
            error = self._describe(e)
            cached = await self._cached(source_id)
            if cached:
                ctx.fault(f"Error getting {source_id}, using cache: {error}")
                ctx.done(source_id)
                ctx.outcomes.append(SourceOutcome(source=source_id, status="fallback", count=len(cached), error=error))
                ctx.health.record_failure(source_id, error, fallback_count=len(cached))
                return self._tag(source_id, cached)

            ctx.fault(f"Getting {source_id} {error}")
            ctx.outcomes.append(SourceOutcome(source=source_id, status="error", error=error))
            ctx.health.record_failure(source_id, error)
            return []

        if shows:
            self._tag(source_id, shows)
            await self.event_cache.set(source_id, shows)
            ctx.done(source_id)
            ctx.outcomes.append(SourceOutcome(source=source_id, status="fresh", count=len(shows)))
            ctx.health.record_success(source_id, len(shows))
            logger.info("source_fetched", source=source_id, count=len(shows))
            await self._progress(f"Remaining sources: {ctx.remaining()}")
            return shows

        cached = await self._cached(source_id)
        if cached:
            ctx.done(source_id)
            ctx.outcomes.append(SourceOutcome(source=source_id, status="fallback", count=len(cached)))
            ctx.health.record_success(source_id, len(cached), fallback=True)
            logger.info("source_fallback_used", source=source_id, count=len(cached))
            await self._progress(f"Using cached events for {source_id}. Remaining: {ctx.remaining()}")
            return self._tag(source_id, cached)

        ctx.fault(f"No events from {source_id} (fresh or cached)")
        ctx.outcomes.append(SourceOutcome(source=source_id, status="empty"))
        ctx.health.record_failure(source_id, "empty result")
        return []

    def _to_shows(self, source_id: str, raw: list[RawRecord]) -> list[Show]:
        """Validate raw handler records, dropping the ones that do not parse."""
        if not isinstance(raw, list):
            raise TypeError(f"handler returned {type(raw).__name__}, expected a list")

        shows: list[Show] = []
        for record in raw:
            if isinstance(record, Show):
                shows.append(record.model_copy(deep=True))
                continue
            try:
                shows.append(Show.model_validate(record))
            except ValidationError as e:
                logger.warning("show_record_invalid", source=source_id, error=str(e))
        return shows

    @staticmethod
    def _tag(source_id: str, shows: list[Show]) -> list[Show]:
        for show in shows:
            show.promoter = source_id
        return shows

    async def _cached(self, source_id: str) -> Optional[list[Show]]:
        try:
            return await self.event_cache.get(source_id)
        except Exception as e:
            logger.warning("event_cache_read_failed", source=source_id, error=str(e))
            return None

    def _describe(self, error: Exception) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return f"timed out after {self.source_timeout}s"
        return str(error) or type(error).__name__

    async def _cache_images(self, shows: list[Show], ctx: RunContext) -> None:
        """Point each show at its cached image.

        Sequential, to bound the load on image hosts and report progress.
        """
        total = len(shows)
        for i, show in enumerate(shows):
            show.imagesource = show.image
            if show.image:
                result = await self.image_cache.get_or_fetch(show.image)
                if result.ok:
                    show.image = self.image_prefix + result.name
                    if result.was_cached:
                        ctx.images_reused += 1
                    else:
                        ctx.images_cached += 1
                else:
                    # Keep the original URL
                    ctx.image_failures.append(f"{show.imagesource}: {result.error}")
            await self._progress(f"Converting images: {i + 1} / {total}")
        await self._progress(f"Converted {total} images")

    async def _persist(self, feed: Feed) -> None:
        try:
            await self.feed_store.put(self.feed_key, "application/json", feed.to_json())
        except Exception as e:
            logger.error("feed_persist_failed", key=self.feed_key, error=str(e))
            raise FeedPersistError(f"Could not write {self.feed_key}: {e}") from e

    async def _persist_diagnostics(self, diagnostics: RunDiagnostics) -> None:
        try:
            await self.feed_store.put(
                self.diagnostics_key, "application/json", diagnostics.model_dump_json(indent=2)
            )
        except Exception as e:
            logger.warning("diagnostics_persist_failed", key=self.diagnostics_key, error=str(e))

    async def _progress(self, message: str) -> None:
        """Publish a status message; a failed status write is not fatal."""
        try:
            await self.status.set(message)
        except Exception as e:
            logger.warning("status_update_failed", error=str(e))
