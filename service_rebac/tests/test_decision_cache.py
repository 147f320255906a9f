"""
Tests for decision cache backends.
"""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import ServiceError
from service_rebac.app.cache import MemoryDecisionCache, NullDecisionCache, RedisDecisionCache
from service_rebac.app.policy.models import CheckResult


ALLOWED = CheckResult(True, "Role 'owner' allowed on project")
DENIED = CheckResult(False, "Action 'delete' denied on project")


class TestMemoryDecisionCache:
    """Test cases for MemoryDecisionCache."""

    @pytest.fixture
    def cache(self, fake_clock):
        """Create memory cache on a fake clock."""
        return MemoryDecisionCache(default_ttl=300, sweep_interval=60, clock=fake_clock)

    @pytest.mark.asyncio
    async def test_set_and_get(self, cache):
        """Test stored results are returned."""
        await cache.set("hasRole:project:owner:user-1:p1", ALLOWED)

        assert await cache.get("hasRole:project:owner:user-1:p1") == ALLOWED
        assert await cache.get("hasRole:project:owner:user-2:p1") is None

    @pytest.mark.asyncio
    async def test_negative_results_cached(self, cache):
        """Test denials are stored like grants."""
        await cache.set("k", DENIED)

        assert await cache.get("k") == DENIED

    @pytest.mark.asyncio
    async def test_expired_entry_not_returned(self, cache, fake_clock):
        """Test reads enforce the deadline without waiting for a sweep."""
        await cache.set("k", ALLOWED)

        fake_clock.advance(299)
        assert await cache.get("k") == ALLOWED

        fake_clock.advance(1)
        assert await cache.get("k") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_per_entry_ttl(self, cache, fake_clock):
        """Test an explicit ttl overrides the default."""
        await cache.set("short", ALLOWED, ttl=10)
        await cache.set("long", ALLOWED)

        fake_clock.advance(11)

        assert await cache.get("short") is None
        assert await cache.get("long") == ALLOWED

    @pytest.mark.asyncio
    async def test_set_replaces_entry(self, cache, fake_clock):
        """Test writing a key again renews value and deadline."""
        await cache.set("k", DENIED)
        fake_clock.advance(200)
        await cache.set("k", ALLOWED)
        fake_clock.advance(200)

        assert await cache.get("k") == ALLOWED

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, cache, fake_clock):
        """Test the sweep drops expired entries and keeps live ones."""
        await cache.set("old-1", ALLOWED)
        await cache.set("old-2", DENIED)
        fake_clock.advance(250)
        await cache.set("fresh", ALLOWED)
        fake_clock.advance(60)

        removed = cache.sweep()

        assert removed == 2
        assert len(cache) == 1
        assert await cache.get("fresh") == ALLOWED

    @pytest.mark.asyncio
    async def test_writes_sweep_without_background_task(self, cache, fake_clock):
        """Test an unstarted cache drops expired entries once a sweep interval passed."""
        for i in range(5):
            await cache.set(f"once-{i}", ALLOWED)
        fake_clock.advance(301)

        await cache.set("new", DENIED)

        assert cache._sweep_task is None
        assert len(cache) == 1
        assert await cache.get("new") == DENIED

    @pytest.mark.asyncio
    async def test_writes_within_interval_do_not_sweep(self, cache, fake_clock):
        """Test writes only sweep after the interval elapsed."""
        await cache.set("short", ALLOWED, ttl=1)
        fake_clock.advance(30)

        await cache.set("other", ALLOWED)

        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        """Test clear empties the cache."""
        await cache.set("a", ALLOWED)
        await cache.set("b", DENIED)

        await cache.clear()

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_background_sweep(self, fake_clock):
        """Test the started cache sweeps periodically until stopped."""
        cache = MemoryDecisionCache(default_ttl=5, sweep_interval=0.01, clock=fake_clock)
        await cache.set("k", ALLOWED)
        fake_clock.advance(10)

        await cache.start()
        await asyncio.sleep(0.05)

        assert len(cache) == 0

        task = cache._sweep_task
        await cache.stop()

        assert task.cancelled()
        assert cache._sweep_task is None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, cache):
        """Test starting twice keeps a single sweep task."""
        await cache.start()
        task = cache._sweep_task
        await cache.start()

        assert cache._sweep_task is task

        await cache.stop()
        await cache.stop()

    @pytest.mark.asyncio
    async def test_health_check(self, cache):
        """Test memory cache is always healthy."""
        assert await cache.health_check() is True


class TestNullDecisionCache:
    """Test cases for NullDecisionCache."""

    @pytest.mark.asyncio
    async def test_never_hits(self):
        """Test nothing is ever stored."""
        cache = NullDecisionCache()

        await cache.set("k", ALLOWED)

        assert await cache.get("k") is None
        await cache.clear()
        await cache.start()
        await cache.stop()


class TestRedisDecisionCache:
    """Test cases for RedisDecisionCache."""

    @pytest.fixture
    def redis_client(self):
        """Create mock Redis client."""
        client = AsyncMock()
        client.get.return_value = None
        return client

    @pytest.fixture
    def cache(self, redis_client):
        """Create Redis cache over the mock client."""
        return RedisDecisionCache("redis://localhost:6379/0", default_ttl=300, client=redis_client)

    @pytest.mark.asyncio
    async def test_set_uses_setex(self, cache, redis_client):
        """Test results are stored with a TTL under the service prefix."""
        await cache.set("hasRole:project:owner:user-1:p1", ALLOWED, ttl=120)

        redis_client.setex.assert_awaited_once()
        key, ttl, payload = redis_client.setex.await_args.args
        assert key == "rebac:hasRole:project:owner:user-1:p1"
        assert ttl == 120
        data = json.loads(payload)
        assert data["allowed"] is True
        assert data["message"] == ALLOWED.message
        assert "cached_at" in data

    @pytest.mark.asyncio
    async def test_set_default_ttl(self, cache, redis_client):
        """Test the default TTL applies when none is given."""
        await cache.set("k", DENIED)

        assert redis_client.setex.await_args.args[1] == 300

    @pytest.mark.asyncio
    async def test_get_hit(self, cache, redis_client):
        """Test stored JSON is decoded into a result."""
        redis_client.get.return_value = json.dumps({
            "allowed": False, "message": DENIED.message, "cached_at": "2024-01-01T00:00:00",
        })

        assert await cache.get("k") == DENIED
        redis_client.get.assert_awaited_once_with("rebac:k")

    @pytest.mark.asyncio
    async def test_get_miss(self, cache):
        """Test absent keys are misses."""
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_errors_are_misses(self, cache, redis_client):
        """Test Redis failures degrade to recomputation."""
        redis_client.get.side_effect = ConnectionError("redis down")
        redis_client.setex.side_effect = ConnectionError("redis down")

        assert await cache.get("k") is None
        await cache.set("k", ALLOWED)

    @pytest.mark.asyncio
    async def test_clear_deletes_prefixed_keys(self, cache, redis_client):
        """Test clear removes every decision key."""
        async def scan_iter(match=None):
            for key in ("rebac:a", "rebac:b"):
                yield key

        redis_client.scan_iter = MagicMock(side_effect=scan_iter)

        await cache.clear()

        redis_client.scan_iter.assert_called_once_with(match="rebac:*")
        redis_client.delete.assert_awaited_once_with("rebac:a", "rebac:b")

    @pytest.mark.asyncio
    async def test_start_failure(self, cache, redis_client):
        """Test an unreachable Redis fails startup."""
        redis_client.ping.side_effect = ConnectionError("refused")

        with pytest.raises(ServiceError) as exc_info:
            await cache.start()

        assert exc_info.value.code == "REDIS_START_FAILED"

    @pytest.mark.asyncio
    async def test_stop_closes_client(self, cache, redis_client):
        """Test stop closes the connection."""
        await cache.stop()

        redis_client.aclose.assert_awaited_once()
        assert cache._redis is None

    @pytest.mark.asyncio
    async def test_health_check(self, cache, redis_client):
        """Test health follows ping."""
        assert await cache.health_check() is True

        redis_client.ping.side_effect = ConnectionError("refused")
        assert await cache.health_check() is False
