"""Per-run health tracking for event sources."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class SourceHealth:
    """How one source fared in a run."""

    healthy: bool
    fallback: bool
    event_count: int
    last_error: Optional[str] = None
    last_check: str = field(default_factory=_now)


class HealthMonitor:
    """Record how each source behaved during one collection run.

    The report is persisted with the run diagnostics so operators can see
    which sources are leaning on their cached results.
    """

    def __init__(self):
        self.sources: dict[str, SourceHealth] = {}

    def record_success(self, source: str, event_count: int, fallback: bool = False) -> None:
        """Record a source that contributed events.

        Args:
            source: Source id
            event_count: Number of events used
            fallback: True when the events came from the event cache
        """
        self.sources[source] = SourceHealth(healthy=not fallback, fallback=fallback, event_count=event_count)
        logger.debug("source_recorded", source=source, event_count=event_count, fallback=fallback)

    def record_failure(self, source: str, error: str, fallback_count: int = 0) -> None:
        """Record a source that failed or returned nothing.

        Args:
            source: Source id
            error: Description of the failure
            fallback_count: Number of cached events that stood in, if any
        """
        self.sources[source] = SourceHealth(
            healthy=False,
            fallback=fallback_count > 0,
            event_count=fallback_count,
            last_error=error,
        )
        logger.warning("source_unhealthy", source=source, fallback=fallback_count > 0, error=error)

    def get_unhealthy_sources(self) -> list[str]:
        """Sources that fell back to the cache or gave nothing."""
        return [name for name, entry in self.sources.items() if not entry.healthy]

    def get_status(self) -> dict[str, Any]:
        """Full report: summary counts plus every source entry."""
        entries = list(self.sources.values())
        healthy = sum(1 for e in entries if e.healthy)
        return {
            "timestamp": _now(),
            "summary": {
                "healthy": healthy,
                "unhealthy": len(entries) - healthy,
                "fallback": sum(1 for e in entries if e.fallback),
                "total": len(entries),
            },
            "sources": {name: asdict(entry) for name, entry in self.sources.items()},
        }
