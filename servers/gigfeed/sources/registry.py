"""Registry of source handlers, keyed by source id."""

from typing import Any, Awaitable, Callable, Union

from ..cache.event_cache import validate_source_id
from ..models import Show

RawRecord = Union[dict[str, Any], Show]
SourceHandler = Callable[[], Awaitable[list[RawRecord]]]


class SourceRegistry:
    """Maps each source id to a display label and an async handler."""

    def __init__(self):
        self._handlers: dict[str, SourceHandler] = {}
        self._labels: dict[str, str] = {}

    def register(self, source_id: str, label: str, handler: SourceHandler) -> None:
        validate_source_id(source_id)
        self._handlers[source_id] = handler
        self._labels[source_id] = label

    def ids(self) -> list[str]:
        """Source ids in registration order."""
        return list(self._handlers)

    def labels(self) -> dict[str, str]:
        return dict(self._labels)

    async def invoke(self, source_id: str) -> list[RawRecord]:
        """Run one source's handler.

        Raises:
            KeyError: If no handler is registered for source_id
        """
        handler = self._handlers[source_id]
        return await handler()
