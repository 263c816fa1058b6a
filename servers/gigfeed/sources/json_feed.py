"""
Generic JSON listing source.

Cost: Free (plain HTTPS GET)
Use Case: Venues or partner sites that publish their listings as a JSON
array of show records.
"""

import asyncio
from typing import Any

import httpx
import structlog

from ..cache.url_validator import validate_feed_url
from .registry import SourceHandler

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 60.0


def json_feed_source(url: str, timeout: float = DEFAULT_TIMEOUT, resolve_dns: bool = True,
                     transport: httpx.AsyncBaseTransport | None = None) -> SourceHandler:
    """
    Build a handler that fetches show records from a JSON endpoint.

    The endpoint may return a list, or an object with a "shows" or
    "events" list.

    Args:
        url: HTTPS URL of the listing
        timeout: Request timeout in seconds
        resolve_dns: Check resolved addresses against the SSRF policy
        transport: Optional httpx transport (tests use MockTransport)

    Returns:
        Async handler returning raw show records
    """

    async def fetch() -> list[dict[str, Any]]:
        checked = await asyncio.to_thread(validate_feed_url, url, resolve_dns)

        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(checked, headers={"Accept": "application/json"})
            response.raise_for_status()
            data = response.json()

        if isinstance(data, dict):
            data = data.get("shows", data.get("events"))
        if not isinstance(data, list):
            raise ValueError(f"Expected a JSON list of shows from {url}")

        logger.debug("json_feed_fetched", url=url, count=len(data))
        return data

    fetch.__name__ = f"json_feed[{url}]"
    return fetch
