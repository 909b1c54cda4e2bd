"""Tests for the two-tier result cache."""

import pytest

from vigil.core.cache import ResultCache, cache_key, is_cacheable_result
from vigil.lib.utils import to_iso, utcnow


def _task(task_type="price-alert", config=None, task_id="t1"):
    return {
        "id": task_id,
        "type": task_type,
        "config": config if config is not None else {"token_mint": "LYN"},
    }


def test_cache_key_ignores_notifications_and_key_order():
    """Test that tasks watching the same thing share a signature."""
    a = cache_key("price-alert", {"token_mint": "LYN", "price_threshold": {"above": 1}})
    b = cache_key(
        "price-alert",
        {"price_threshold": {"above": 1}, "token_mint": "LYN", "notifications": {"channels": ["email"]}},
    )
    assert a == b
    assert a != cache_key("defi-monitor", {"token_mint": "LYN", "price_threshold": {"above": 1}})


def test_alerting_or_failed_results_are_not_cacheable():
    assert is_cacheable_result({"price": 1, "alert": False})
    assert not is_cacheable_result({"price": 1, "alert": True})
    assert not is_cacheable_result({"error": "feed down"})
    assert not is_cacheable_result({})


@pytest.mark.asyncio
async def test_set_and_get(test_db):
    cache = ResultCache(test_db)
    task = _task()

    assert await cache.get(task) is None
    assert await cache.set(task, {"price": 0.04, "alert": False})
    assert await cache.get(task) == {"price": 0.04, "alert": False}
    assert cache.size == 1


@pytest.mark.asyncio
async def test_store_tier_survives_memory_clear(test_db):
    """Test that the store is authoritative when the in-process map is empty."""
    cache = ResultCache(test_db)
    task = _task()
    await cache.set(task, {"price": 0.04, "alert": False})

    cache.clear()
    assert cache.size == 0
    assert await cache.get(task) == {"price": 0.04, "alert": False}
    assert cache.size == 1

    other = ResultCache(test_db)
    assert await other.get(_task(task_id="t2")) == {"price": 0.04, "alert": False}


@pytest.mark.asyncio
async def test_uncached_types_are_ignored(test_db):
    cache = ResultCache(test_db)
    task = _task("security-scan", {"urls": ["https://example.com"]})

    assert await cache.set(task, {"alert": False}) is False
    assert await cache.get(task) is None


@pytest.mark.asyncio
async def test_expired_entries_miss_and_are_purged(test_db):
    cache = ResultCache(test_db, ttls={"price-alert": 0})
    task = _task()
    await cache.set(task, {"price": 0.04, "alert": False})

    assert await cache.get(task) is None
    assert await cache.purge_expired() == 1
    assert await test_db.count_cache_entries(to_iso(utcnow())) == 0
