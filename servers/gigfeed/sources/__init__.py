"""
Event source handlers.

Each source is an async callable returning a list of raw show records
(dicts or Show models) and raising on failure. The registry maps source
ids to handlers and display labels.
"""

from typing import Any

from .json_feed import json_feed_source
from .registry import RawRecord, SourceHandler, SourceRegistry


def build_registry(config: dict[str, Any]) -> SourceRegistry:
    """Register a JSON feed source for each entry in config["sources"]."""
    registry = SourceRegistry()
    resolve_dns = config.get("images", {}).get("resolve_dns", True)
    timeout = config.get("collect", {}).get("source_timeout", 120.0)

    for entry in config.get("sources", []):
        registry.register(
            entry["id"],
            entry.get("label", entry["id"]),
            json_feed_source(entry["url"], timeout=timeout, resolve_dns=resolve_dns),
        )
    return registry


__all__ = [
    "RawRecord",
    "SourceHandler",
    "SourceRegistry",
    "build_registry",
    "json_feed_source",
]
