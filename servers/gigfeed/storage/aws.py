"""AWS backends: S3 for blobs, DynamoDB for tables."""

import asyncio
from typing import Any, AsyncIterator, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from ..models import StoredItem
from .base import BlobStore, Content, TableStore, require_keys, to_bytes
from .keys import has_suffix, sanitize_key

logger = structlog.get_logger()

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class S3Store(BlobStore):
    """Blob store backed by a key prefix in an S3 bucket."""

    def __init__(self, bucket: str, prefix: str, region: Optional[str] = None, client: Any = None):
        """
        Args:
            bucket: Bucket name
            prefix: Folder-style prefix, e.g. "client/pix"
            region: AWS region for a new client
            client: Existing boto3 S3 client (shared between stores)
        """
        self.bucket = bucket
        self.prefix = prefix.strip("/") + "/" if prefix.strip("/") else ""
        self.namespace = self.prefix or "/"
        self.client = client or boto3.client("s3", region_name=region)

    def _key(self, name: str) -> str:
        return self.prefix + sanitize_key(name)

    async def get_bytes(self, name: str) -> Optional[bytes]:
        try:
            key = self._key(name)
            response = await asyncio.to_thread(self.client.get_object, Bucket=self.bucket, Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except (ClientError, BotoCoreError, ValueError) as e:
            logger.debug("s3_get_failed", bucket=self.bucket, key=name, error=str(e))
            return None

    async def put(self, name: str, content_type: Optional[str], content: Content) -> None:
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=self._key(name),
            Body=to_bytes(content),
            ContentType=content_type or "application/octet-stream",
        )

    async def has(self, name: str, with_stats: bool = False) -> Optional[StoredItem]:
        try:
            safe_name = sanitize_key(name)
            if has_suffix(safe_name):
                return await self._head(safe_name)
            return await self._first_with_prefix(safe_name)
        except (ClientError, BotoCoreError, ValueError) as e:
            logger.debug("s3_has_failed", bucket=self.bucket, key=name, error=str(e))
            return None

    async def _head(self, safe_name: str) -> Optional[StoredItem]:
        try:
            response = await asyncio.to_thread(
                self.client.head_object, Bucket=self.bucket, Key=self.prefix + safe_name
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in NOT_FOUND_CODES:
                return None
            raise
        return StoredItem(
            name=safe_name,
            length=response.get("ContentLength"),
            modified_at=_millis(response.get("LastModified")),
            content_type=response.get("ContentType"),
        )

    async def _first_with_prefix(self, safe_name: str) -> Optional[StoredItem]:
        response = await asyncio.to_thread(
            self.client.list_objects_v2, Bucket=self.bucket, Prefix=self.prefix + safe_name
        )
        for item in response.get("Contents", []):
            found = item["Key"][len(self.prefix):]
            if "/" in found:
                continue
            return StoredItem(
                name=found,
                length=item.get("Size"),
                modified_at=_millis(item.get("LastModified")),
            )
        return None

    async def delete(self, name: str) -> None:
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=self._key(name))

    async def _all_names(self) -> list[str]:
        names: list[str] = []
        paginator = self.client.get_paginator("list_objects_v2")
        pages = await asyncio.to_thread(
            lambda: list(paginator.paginate(Bucket=self.bucket, Prefix=self.prefix))
        )
        for page in pages:
            for item in page.get("Contents", []):
                name = item["Key"][len(self.prefix):]
                # Direct children only
                if name and "/" not in name:
                    names.append(name)
        return names

    async def list_names(self, prefix: str = "") -> list[str]:
        names = await self._all_names()
        return sorted(n for n in names if n.startswith(prefix) and not n.startswith("."))

    async def purge(self) -> str:
        names = [n for n in await self._all_names() if not n.startswith(".")]
        for name in names:
            await asyncio.to_thread(
                self.client.delete_object, Bucket=self.bucket, Key=self.prefix + name
            )
        logger.info("store_purged", namespace=self.namespace, removed=len(names))
        return self.namespace


def _millis(value: Any) -> Optional[float]:
    """Convert a boto3 datetime to epoch milliseconds."""
    if value is None:
        return None
    return value.timestamp() * 1000


class DynamoTableStore(TableStore):
    """Table store backed by a DynamoDB table keyed on partitionKey/rowKey."""

    def __init__(self, table_name: str, region: Optional[str] = None, resource: Any = None):
        self.table_name = table_name
        self.dynamodb = resource or boto3.resource("dynamodb", region_name=region)
        self.table = self.dynamodb.Table(table_name)
        logger.info("dynamo_table_store_ready", table=table_name)

    async def get_entity(self, partition_key: str, row_key: str) -> Optional[dict[str, Any]]:
        try:
            response = await asyncio.to_thread(
                self.table.get_item, Key={"partitionKey": partition_key, "rowKey": row_key}
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning("dynamo_get_failed", table=self.table_name, error=str(e))
            return None
        return response.get("Item")

    async def upsert_entity(self, entity: dict[str, Any]) -> None:
        require_keys(entity)
        await asyncio.to_thread(self.table.put_item, Item=entity)

    async def list_entities(self) -> AsyncIterator[dict[str, Any]]:
        response = await asyncio.to_thread(self.table.scan)
        for item in response.get("Items", []):
            yield item

        # Handle pagination
        while "LastEvaluatedKey" in response:
            response = await asyncio.to_thread(
                self.table.scan, ExclusiveStartKey=response["LastEvaluatedKey"]
            )
            for item in response.get("Items", []):
                yield item

    async def delete_entity(self, partition_key: str, row_key: str) -> None:
        await asyncio.to_thread(
            self.table.delete_item, Key={"partitionKey": partition_key, "rowKey": row_key}
        )
