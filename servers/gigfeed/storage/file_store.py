"""
Local filesystem backends.

FileStore keeps one file per key in a folder. FileTableStore keeps each
table as a single JSON document. Blocking filesystem calls run in a worker
thread so they do not stall the event loop.
"""

import asyncio
import json
import mimetypes
import os
import uuid
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import structlog

from ..models import StoredItem
from .base import BlobStore, Content, TableStore, require_keys, to_bytes
from .keys import has_suffix, sanitize_key

logger = structlog.get_logger()


class FileStore(BlobStore):
    """Blob store backed by a local folder."""

    def __init__(self, folder: str | Path):
        self.folder = Path(folder)
        self.namespace = str(self.folder)

    def _path(self, name: str) -> Path:
        return self.folder / sanitize_key(name)

    async def get_bytes(self, name: str) -> Optional[bytes]:
        try:
            path = self._path(name)
            return await asyncio.to_thread(path.read_bytes)
        except (OSError, ValueError):
            return None

    async def put(self, name: str, content_type: Optional[str], content: Content) -> None:
        path = self._path(name)
        data = to_bytes(content)
        await asyncio.to_thread(self._write, path, data)

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write then rename so readers never see a half-written file
        tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    async def has(self, name: str, with_stats: bool = False) -> Optional[StoredItem]:
        try:
            safe_name = sanitize_key(name)
            found = await asyncio.to_thread(self._find, safe_name)
            if not found:
                return None
            if not with_stats:
                return StoredItem(name=found)
            stats = await asyncio.to_thread((self.folder / found).stat)
            return StoredItem(
                name=found,
                length=stats.st_size,
                modified_at=stats.st_mtime * 1000,
                content_type=mimetypes.guess_type(found)[0],
            )
        except (OSError, ValueError) as e:
            logger.debug("file_store_has_failed", folder=self.namespace, key=name, error=str(e))
            return None

    def _find(self, safe_name: str) -> Optional[str]:
        if (self.folder / safe_name).is_file():
            return safe_name
        if has_suffix(safe_name) or not self.folder.is_dir():
            return None
        for entry in sorted(self._entries()):
            if entry.startswith(safe_name):
                return entry
        return None

    def _entries(self) -> list[str]:
        if not self.folder.is_dir():
            return []
        return [
            p.name for p in self.folder.iterdir()
            if p.is_file() and not p.name.startswith(".") and not p.name.endswith(".tmp")
        ]

    async def delete(self, name: str) -> None:
        path = self._path(name)
        await asyncio.to_thread(path.unlink, True)

    async def list_names(self, prefix: str = "") -> list[str]:
        entries = await asyncio.to_thread(self._entries)
        return sorted(e for e in entries if e.startswith(prefix))

    async def purge(self) -> str:
        entries = await asyncio.to_thread(self._entries)
        for entry in entries:
            await asyncio.to_thread((self.folder / entry).unlink, True)
        logger.info("store_purged", namespace=self.namespace, removed=len(entries))
        return self.namespace


class FileTableStore(TableStore):
    """Table store backed by one JSON file per table.

    Entities are held as {"<partitionKey>/<rowKey>": entity}.
    """

    def __init__(self, folder: str | Path, table_name: str):
        self.folder = Path(folder)
        self.table_name = sanitize_key(table_name)
        self.path = self.folder / f"{self.table_name}.table.json"
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self.path.is_file():
            return {}
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _save(self, rows: dict[str, dict[str, Any]]) -> None:
        self.folder.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.{uuid.uuid4().hex}.tmp")
        tmp.write_text(json.dumps(rows, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    @staticmethod
    def _row_id(partition_key: str, row_key: str) -> str:
        return f"{partition_key}/{row_key}"

    async def get_entity(self, partition_key: str, row_key: str) -> Optional[dict[str, Any]]:
        try:
            rows = await asyncio.to_thread(self._load)
        except (OSError, ValueError) as e:
            logger.warning("table_read_failed", table=self.table_name, error=str(e))
            return None
        return rows.get(self._row_id(partition_key, row_key))

    async def upsert_entity(self, entity: dict[str, Any]) -> None:
        partition_key, row_key = require_keys(entity)
        async with self._lock:
            rows = await asyncio.to_thread(self._load)
            rows[self._row_id(partition_key, row_key)] = dict(entity)
            await asyncio.to_thread(self._save, rows)

    async def list_entities(self) -> AsyncIterator[dict[str, Any]]:
        rows = await asyncio.to_thread(self._load)
        for entity in rows.values():
            yield entity

    async def delete_entity(self, partition_key: str, row_key: str) -> None:
        async with self._lock:
            rows = await asyncio.to_thread(self._load)
            if rows.pop(self._row_id(partition_key, row_key), None) is not None:
                await asyncio.to_thread(self._save, rows)
