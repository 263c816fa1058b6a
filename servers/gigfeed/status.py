"""Status message that persists between invocations."""

import structlog

from .storage.base import BlobStore

logger = structlog.get_logger()


class StatusBoard:
    """The most recent human-readable progress message.

    A status caller in another invocation reads whatever was last written,
    so long runs report progress without anyone waiting on them.
    """

    def __init__(self, store: BlobStore, key: str = "status.txt"):
        self.store = store
        self.key = key

    async def set(self, message: str) -> str:
        """Overwrite the status."""
        await self.store.put(self.key, "text/plain", message)
        logger.debug("status_updated", status=message)
        return message

    async def get(self) -> str:
        """Return the last status, or "" if none was written."""
        return await self.store.get(self.key)
