"""
Storage backends.

Each store implements one of two interfaces:
- BlobStore: get/put/has/delete/list_names/purge over a namespace
- TableStore: get_entity/upsert_entity/list_entities/delete_entity

The backend is picked once from configuration by the factories below.
"""

from pathlib import Path
from typing import Any

from .base import BlobStore, TableStore
from .file_store import FileStore, FileTableStore
from .keys import StorageKeyError, sanitize_key


def namespace_path(config: dict[str, Any], namespace: str) -> str:
    """Join the storage root with a named namespace folder."""
    storage = config["storage"]
    folder = storage.get("namespaces", {}).get(namespace, namespace)
    root = storage.get("root", "").rstrip("/")
    return "/".join(part for part in (root, folder.strip("/")) if part)


def get_blob_store(namespace: str, config: dict[str, Any], client: Any = None) -> BlobStore:
    """
    Create the configured blob store for a namespace.

    Args:
        namespace: Namespace name from config (admin, feed, events, images)
        config: Config dict
        client: Optional shared boto3 S3 client

    Returns:
        A BlobStore for the namespace
    """
    backend = config["storage"]["backend"]
    location = namespace_path(config, namespace)

    if backend == "s3":
        from .aws import S3Store

        return S3Store(
            bucket=config["storage"]["bucket"],
            prefix=location,
            region=config["storage"].get("region"),
            client=client,
        )
    if backend == "local":
        return FileStore(Path(location or "."))

    raise ValueError(f"Unknown storage backend: {backend}")


def get_table_store(config: dict[str, Any], resource: Any = None) -> TableStore:
    """Create the configured table store."""
    backend = config["tables"]["backend"]
    table_name = config["tables"]["name"]

    if backend == "dynamodb":
        from .aws import DynamoTableStore

        return DynamoTableStore(
            table_name, region=config["storage"].get("region"), resource=resource
        )
    if backend == "local":
        return FileTableStore(Path(namespace_path(config, "admin") or "."), table_name)

    raise ValueError(f"Unknown table backend: {backend}")


__all__ = [
    "BlobStore",
    "TableStore",
    "FileStore",
    "FileTableStore",
    "StorageKeyError",
    "sanitize_key",
    "namespace_path",
    "get_blob_store",
    "get_table_store",
]
