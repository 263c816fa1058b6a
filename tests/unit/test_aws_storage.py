"""Unit tests for the S3 and DynamoDB backends."""

import boto3
import pytest
from moto import mock_aws

from servers.gigfeed.storage.aws import DynamoTableStore, S3Store

BUCKET = "test-gigfeed"
TABLE = "test-gigfeed-table"


@pytest.fixture
def s3_client():
    """Create a mock S3 bucket for testing."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def dynamodb_resource():
    """Create a mock DynamoDB table keyed on partitionKey/rowKey."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        dynamodb.create_table(
            TableName=TABLE,
            KeySchema=[
                {"AttributeName": "partitionKey", "KeyType": "HASH"},
                {"AttributeName": "rowKey", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "partitionKey", "AttributeType": "S"},
                {"AttributeName": "rowKey", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        yield dynamodb


class TestS3Store:
    """Tests for S3Store."""

    @pytest.fixture
    def store(self, s3_client) -> S3Store:
        return S3Store(BUCKET, "client/pix", client=s3_client)

    def test_prefix_normalized(self, s3_client):
        """Prefixes always end with one slash."""
        assert S3Store(BUCKET, "/client/pix/", client=s3_client).prefix == "client/pix/"
        assert S3Store(BUCKET, "", client=s3_client).prefix == ""

    @pytest.mark.asyncio
    async def test_put_then_get(self, store: S3Store, s3_client):
        """Objects land under the prefix with their content type."""
        await store.put("events.json", "application/json", '{"shows": []}')

        assert await store.get("events.json") == '{"shows": []}'
        head = s3_client.head_object(Bucket=BUCKET, Key="client/pix/events.json")
        assert head["ContentType"] == "application/json"

    @pytest.mark.asyncio
    async def test_get_missing(self, store: S3Store):
        """Missing objects read as empty."""
        assert await store.get("missing.json") == ""
        assert await store.get_bytes("missing.json") is None

    @pytest.mark.asyncio
    async def test_has_exact_with_stats(self, store: S3Store):
        """head_object answers names with a suffix."""
        await store.put("a.jpg", "image/jpeg", b"12345")
        found = await store.has("a.jpg", with_stats=True)
        assert found.name == "a.jpg"
        assert found.length == 5
        assert found.content_type == "image/jpeg"
        assert found.modified_at > 0

    @pytest.mark.asyncio
    async def test_has_missing(self, store: S3Store):
        """A missing object gives None."""
        assert await store.has("missing.jpg") is None
        assert await store.has("missing") is None

    @pytest.mark.asyncio
    async def test_has_prefix(self, store: S3Store):
        """A suffixless name finds name.ext."""
        await store.put("img-0123abcd.png", "image/png", b"png")
        found = await store.has("img-0123abcd")
        assert found.name == "img-0123abcd.png"

    @pytest.mark.asyncio
    async def test_has_ignores_nested_keys(self, store: S3Store, s3_client):
        """Keys in sub-folders are not direct children."""
        s3_client.put_object(Bucket=BUCKET, Key="client/pix/img/nested.png", Body=b"x")
        assert await store.has("img") is None

    @pytest.mark.asyncio
    async def test_delete_and_list(self, store: S3Store):
        """Deleted objects drop out of listings."""
        await store.put("cache-a.json", None, "a")
        await store.put("cache-b.json", None, "b")
        await store.delete("cache-a.json")
        assert await store.list_names("cache-") == ["cache-b.json"]

    @pytest.mark.asyncio
    async def test_purge(self, store: S3Store, s3_client):
        """Purge empties the prefix but not the rest of the bucket."""
        await store.put("a.jpg", None, b"a")
        await store.put("b.jpg", None, b"b")
        s3_client.put_object(Bucket=BUCKET, Key="client/status.txt", Body=b"idle")

        namespace = await store.purge()

        assert namespace == "client/pix/"
        assert await store.list_names() == []
        s3_client.head_object(Bucket=BUCKET, Key="client/status.txt")


class TestDynamoTableStore:
    """Tests for DynamoTableStore."""

    @pytest.fixture
    def table(self, dynamodb_resource) -> DynamoTableStore:
        return DynamoTableStore(TABLE, resource=dynamodb_resource)

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, table: DynamoTableStore):
        """Entities are stored under partitionKey/rowKey."""
        await table.upsert_entity({"partitionKey": "locks", "rowKey": "collect", "record": "1 a"})
        entity = await table.get_entity("locks", "collect")
        assert entity["record"] == "1 a"

    @pytest.mark.asyncio
    async def test_get_missing(self, table: DynamoTableStore):
        """Absent entities give None."""
        assert await table.get_entity("locks", "none") is None

    @pytest.mark.asyncio
    async def test_upsert_requires_keys(self, table: DynamoTableStore):
        """Entities without keys are refused before any call."""
        with pytest.raises(ValueError):
            await table.upsert_entity({"rowKey": "r"})

    @pytest.mark.asyncio
    async def test_list_and_delete(self, table: DynamoTableStore):
        """Scan yields every entity; delete removes one."""
        for i in range(3):
            await table.upsert_entity({"partitionKey": "p", "rowKey": f"r{i}"})
        await table.delete_entity("p", "r0")

        rows = [e["rowKey"] async for e in table.list_entities()]
        assert sorted(rows) == ["r1", "r2"]
