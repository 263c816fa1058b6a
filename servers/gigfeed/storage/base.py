"""Interfaces shared by all storage backends."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional, Union

from ..models import StoredItem

Content = Union[str, bytes]


class BlobStore(ABC):
    """Byte/string store scoped to one namespace (folder or key prefix).

    Reads never raise: a missing key or backend error comes back as an
    empty result. Writes and deletes raise on failure.
    """

    namespace: str

    async def get(self, name: str) -> str:
        """Return the content of name as text, or "" when absent."""
        data = await self.get_bytes(name)
        if data is None:
            return ""
        return data.decode("utf-8", errors="replace")

    @abstractmethod
    async def get_bytes(self, name: str) -> Optional[bytes]:
        """Return the raw content of name, or None when absent."""

    @abstractmethod
    async def put(self, name: str, content_type: Optional[str], content: Content) -> None:
        """Create or overwrite name."""

    @abstractmethod
    async def has(self, name: str, with_stats: bool = False) -> Optional[StoredItem]:
        """Find name, or the first entry starting with name when it has no suffix."""

    @abstractmethod
    async def delete(self, name: str) -> None:
        """Remove name if present."""

    @abstractmethod
    async def list_names(self, prefix: str = "") -> list[str]:
        """List entry names in the namespace, optionally filtered by prefix."""

    @abstractmethod
    async def purge(self) -> str:
        """Remove every non-dotfile entry in the namespace and return the namespace."""


class TableStore(ABC):
    """Structured entity store keyed by partitionKey and rowKey."""

    @abstractmethod
    async def get_entity(self, partition_key: str, row_key: str) -> Optional[dict[str, Any]]:
        """Return the entity, or None when absent or unreadable."""

    @abstractmethod
    async def upsert_entity(self, entity: dict[str, Any]) -> None:
        """Create or replace an entity."""

    @abstractmethod
    def list_entities(self) -> AsyncIterator[dict[str, Any]]:
        """Iterate over every entity lazily."""

    @abstractmethod
    async def delete_entity(self, partition_key: str, row_key: str) -> None:
        """Remove an entity if present."""


def require_keys(entity: dict[str, Any]) -> tuple[str, str]:
    """Return (partitionKey, rowKey) of an entity or raise ValueError."""
    partition_key = entity.get("partitionKey")
    row_key = entity.get("rowKey")
    if not partition_key or not row_key:
        raise ValueError("Entity must have partitionKey and rowKey")
    return str(partition_key), str(row_key)


def to_bytes(content: Content) -> bytes:
    """Encode text content as UTF-8."""
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content)
