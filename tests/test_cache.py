import asyncio
import json

import pytest

from chaincredit.core.errors import CacheError
from chaincredit.services.cache import CacheLayer
from tests.conftest import demo_record


class FailingStore:
    async def get(self, key):
        raise CacheError("disk gone", operation="store.get", identifier=key)

    async def set(self, key, value):
        raise CacheError("disk gone", operation="store.set", identifier=key)

    async def delete(self, key):
        raise CacheError("disk gone", operation="store.delete", identifier=key)

    async def keys(self, prefix=""):
        raise CacheError("disk gone", operation="store.keys", identifier=prefix)

    async def clear(self, prefix=""):
        raise CacheError("disk gone", operation="store.clear", identifier=prefix)


@pytest.mark.asyncio
async def test_entry_expires_after_ttl(cache, clock):
    """
    An entry written with a 60s TTL is a hit immediately and a miss after 61s,
    and the purge counts as one eviction.
    """
    payload = {"score": 900}
    await cache.put("score", "nid1", payload, ttl=60)
    assert await cache.get("score", "nid1") == payload

    clock.advance(61)
    assert await cache.get("score", "nid1") is None
    assert cache.evictions == 1
    assert cache.hits == 1
    assert cache.misses == 1


@pytest.mark.asyncio
async def test_entry_is_stale_exactly_at_ttl(cache, clock):
    await cache.put("score", "nid1", {"score": 1}, ttl=60)
    clock.advance(59)
    assert await cache.get("score", "nid1") is not None
    clock.advance(1)
    assert await cache.get("score", "nid1") is None


@pytest.mark.asyncio
async def test_persistent_hit_repopulates_memory(settings, store, clock):
    writer = CacheLayer.from_settings(settings, store=store, clock=clock)
    await writer.put("borrower", "123456789", demo_record())

    reader = CacheLayer.from_settings(settings, store=store, clock=clock)
    record = await reader.get("borrower", "123456789")
    assert record == demo_record()
    assert (await reader.stats()).size == 1

    await store.delete("cache:borrower:123456789")
    assert await reader.get("borrower", "123456789") == demo_record()


@pytest.mark.asyncio
async def test_persisted_layout(cache, store):
    await cache.put("score", "nid1", {"score": 900}, ttl=60)
    raw = await store.get("cache:score:nid1")
    stored = json.loads(raw)
    assert stored["data"] == {"score": 900}
    assert stored["ttl"] == 60000
    assert "T" in stored["timestamp"]


@pytest.mark.asyncio
async def test_corrupt_persistent_entry_is_a_miss(cache, store):
    await store.set("cache:borrower:broken", b"{not json")
    assert await cache.get("borrower", "broken") is None
    assert cache.misses == 1
    assert await store.get("cache:borrower:broken") is None


@pytest.mark.asyncio
async def test_eligibility_is_memory_only(cache, store):
    await cache.put("eligibility", "nid1:1000:50000", {"is_eligible": True})
    assert await store.keys("cache:eligibility") == []
    assert await cache.get("eligibility", "nid1:1000:50000") == {"is_eligible": True}


@pytest.mark.asyncio
async def test_invalidate_identifier_only_touches_that_borrower(cache, store):
    await cache.put("score", "X", {"score": 1})
    await cache.put("loan", "X:LOAN_1", {"id": "LOAN_1"})
    await cache.put("score", "X1", {"score": 2})

    removed = await cache.invalidate_identifier("X", ["score", "loan"])
    assert removed == 2
    assert await cache.get("score", "X") is None
    assert await cache.get("loan", "X:LOAN_1") is None
    assert await cache.get("score", "X1") == {"score": 2}
    assert await store.keys("cache:loan") == []


@pytest.mark.asyncio
async def test_sweep_purges_both_tiers(cache, store, clock):
    await cache.put("score", "a", {"v": 1}, ttl=10)
    await cache.put("borrower", "b", demo_record(), ttl=10)
    await cache.put("borrower", "c", demo_record(), ttl=10)
    # Only in the persistent tier, as after a restart
    cache._memory.pop(("borrower", "c"))
    await cache.put("score", "fresh", {"v": 2}, ttl=1000)

    clock.advance(11)
    assert await cache.sweep() == 3
    assert cache.evictions == 3
    assert await store.keys("cache:") == ["cache:score:fresh"]
    assert (await cache.stats()).size == 1


@pytest.mark.asyncio
async def test_clear_resets_counters(cache, store):
    await cache.put("score", "a", {"v": 1})
    await cache.get("score", "a")
    await cache.get("score", "missing")
    await cache.clear()

    stats = await cache.stats()
    assert (stats.hits, stats.misses, stats.evictions, stats.size, stats.persistent_size) == (0, 0, 0, 0, 0)


@pytest.mark.asyncio
async def test_get_or_load_runs_one_loader_per_key(cache):
    calls = 0
    release = asyncio.Event()

    async def loader():
        nonlocal calls
        calls += 1
        await release.wait()
        return {"score": 900}

    key = "nid1:150000:70000"
    pending = [asyncio.create_task(cache.get_or_load("eligibility", key, loader)) for _ in range(3)]
    await asyncio.sleep(0.01)
    release.set()
    results = await asyncio.gather(*pending)

    assert calls == 1
    assert results == [{"score": 900}] * 3
    assert cache.deduplicated_loads == 2
    assert await cache.get("eligibility", key) == {"score": 900}


@pytest.mark.asyncio
async def test_get_or_load_shares_failures_and_does_not_cache_them(cache):
    async def loader():
        raise CacheError("boom")

    with pytest.raises(CacheError):
        await cache.get_or_load("score", "nid1", loader)
    assert await cache.get("score", "nid1") is None
    assert cache._inflight == {}


@pytest.mark.asyncio
async def test_cancelled_load_fails_waiters_without_cancelling_them(cache):
    started = asyncio.Event()

    async def loader():
        started.set()
        await asyncio.sleep(10)

    key = "nid1:1000:5000"
    owner = asyncio.create_task(cache.get_or_load("eligibility", key, loader))
    await started.wait()
    waiter = asyncio.create_task(cache.get_or_load("eligibility", key, loader))
    await asyncio.sleep(0.01)
    owner.cancel()

    with pytest.raises(CacheError):
        await waiter
    with pytest.raises(asyncio.CancelledError):
        await owner
    assert cache.deduplicated_loads == 1
    assert cache._inflight == {}


@pytest.mark.asyncio
async def test_key_locks_do_not_accumulate(cache):
    for i in range(500):
        key = f"nid{i}:1000:5000"
        await cache.put("eligibility", key, {"eligible": True})
        await cache.invalidate("eligibility", key)
    await cache.put("score", "nid1", {"v": 1})
    await cache.get("score", "nid1")

    assert (await cache.stats()).size == 1
    assert cache._locks == {}


@pytest.mark.asyncio
async def test_store_failures_degrade_to_misses(settings, clock):
    cache = CacheLayer.from_settings(settings, store=FailingStore(), clock=clock)
    await cache.put("borrower", "nid1", demo_record())
    assert await cache.get("borrower", "nid1") == demo_record()
    assert await cache.get("borrower", "other") is None
    await cache.invalidate_identifier("nid1", ["borrower"])
    assert (await cache.stats()).persistent_size == 0
