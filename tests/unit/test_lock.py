"""Tests for the advisory collection lock."""

import pytest

from servers.gigfeed.lock import (
    CLEARED_RECORD,
    DEFAULT_STALENESS_MS,
    AdvisoryLock,
    BlobLockBackend,
    TableLockBackend,
    new_owner_token,
)


@pytest.fixture
def blob_backend(admin_store) -> BlobLockBackend:
    return BlobLockBackend(admin_store)


@pytest.fixture
def lock(blob_backend, clock) -> AdvisoryLock:
    return AdvisoryLock(blob_backend, clock=clock)


class TestAdvisoryLock:
    """Tests for AdvisoryLock over a blob store."""

    @pytest.mark.asyncio
    async def test_acquire_free(self, lock: AdvisoryLock, admin_store, clock):
        """A free lock is taken and records time and owner."""
        assert await lock.acquire("A") is True
        assert await admin_store.get("collect-lock") == f"{clock.now} A"

    @pytest.mark.asyncio
    async def test_second_owner_refused(self, lock: AdvisoryLock):
        """While A holds the lock, B cannot take it."""
        assert await lock.acquire("A") is True
        assert await lock.acquire("B") is False
        assert await lock.is_held("A") is True

    @pytest.mark.asyncio
    async def test_reacquire_by_holder(self, lock: AdvisoryLock):
        """The holder asking again still holds it."""
        await lock.acquire("A")
        assert await lock.acquire("A") is True

    @pytest.mark.asyncio
    async def test_release_frees(self, lock: AdvisoryLock, admin_store):
        """After release another owner can take the lock."""
        await lock.acquire("A")
        await lock.release("A")

        assert await admin_store.get("collect-lock") == CLEARED_RECORD
        assert await lock.acquire("B") is True

    @pytest.mark.asyncio
    async def test_release_by_other_is_ignored(self, lock: AdvisoryLock):
        """Only the holder can release."""
        await lock.acquire("A")
        await lock.release("B")
        assert await lock.is_held("A") is True

    @pytest.mark.asyncio
    async def test_stale_lock_taken_over(self, lock: AdvisoryLock, clock):
        """A record older than the staleness window no longer holds."""
        await lock.acquire("A")
        clock.advance(DEFAULT_STALENESS_MS)

        assert await lock.is_held("A") is False
        assert await lock.acquire("B") is True

    @pytest.mark.asyncio
    async def test_fresh_just_inside_window(self, lock: AdvisoryLock, clock):
        """One millisecond before expiry the lock still holds."""
        await lock.acquire("A")
        clock.advance(DEFAULT_STALENESS_MS - 1)
        assert await lock.acquire("B") is False

    @pytest.mark.asyncio
    async def test_refresh_extends(self, lock: AdvisoryLock, clock):
        """Refreshing restarts the staleness window."""
        await lock.acquire("A")
        clock.advance(2000)
        assert await lock.refresh("A") is True
        clock.advance(2000)

        assert await lock.acquire("B") is False

    @pytest.mark.asyncio
    async def test_refresh_requires_holder(self, lock: AdvisoryLock, clock):
        """Non-holders and stale holders cannot refresh."""
        await lock.acquire("A")
        assert await lock.refresh("B") is False

        clock.advance(DEFAULT_STALENESS_MS)
        assert await lock.refresh("A") is False

    @pytest.mark.asyncio
    async def test_garbled_record_is_free(self, lock: AdvisoryLock, admin_store):
        """A record that does not parse counts as free."""
        await admin_store.put("collect-lock", "text/plain", "garbage")
        assert await lock.acquire("A") is True

    @pytest.mark.asyncio
    async def test_cleared_record_is_free(self, lock: AdvisoryLock, admin_store):
        """The cleared record "0 0" counts as free."""
        await admin_store.put("collect-lock", "text/plain", CLEARED_RECORD)
        assert await lock.acquire("A") is True


class TestTableLockBackend:
    """Tests for AdvisoryLock over a table store."""

    @pytest.mark.asyncio
    async def test_exclusion(self, table_store, clock):
        """The table backend gives the same exclusion."""
        lock = AdvisoryLock(TableLockBackend(table_store), clock=clock)

        assert await lock.acquire("A") is True
        assert await lock.acquire("B") is False

        entity = await table_store.get_entity("locks", "collect-lock")
        assert entity["record"] == f"{clock.now} A"

        await lock.release("A")
        assert await lock.acquire("B") is True


class TestOwnerToken:
    """Tests for owner tokens."""

    def test_unique(self):
        """Two instances never share a token."""
        assert new_owner_token() != new_owner_token()
