import asyncio

import pytest

from carebook.cache.cache_service import CacheService
from carebook.cache.redis_client import RedisClient


def run(coro):
    return asyncio.run(coro)


def test_round_trip(cache):
    value = {"id": "Q-1", "lines": [1, 2.5, "x"], "meta": {"paid": False, "note": None}}
    assert run(cache.set("quote:Q-1", value, 60)) is True
    assert run(cache.get("quote:Q-1")) == value
    assert run(cache.exists("quote:Q-1")) is True


def test_quote_expires_after_ttl(cache, fake_redis):
    run(cache.cache_quote("Q-1", {"total": 100}, ttl=60))
    assert run(cache.get("quote:Q-1")) == {"total": 100}
    fake_redis.advance(61)
    assert run(cache.get("quote:Q-1")) is None


def test_domain_keys_and_default_ttls(cache, fake_redis):
    run(cache.cache_user_session("u1", {"id": "u1"}))
    run(cache.cache_search_results("k", [1]))
    run(cache.cache_dashboard_stats("u1", {"n": 1}))
    run(cache.cache_company_settings({"name": "Acme"}))
    run(cache.cache_tax_rates({"vat": 7}))
    run(cache.cache_client("c1", {"id": "c1"}))
    run(cache.cache_template("t1", {"id": "t1"}))

    def ttl(key):
        return run(fake_redis.ttl(key))

    assert ttl("session:u1") == 86400
    assert ttl("search:k") == 300
    assert ttl("dashboard:stats:u1") == 1800
    assert ttl("company:settings") == 7200
    assert ttl("tax:rates") == 7200
    assert ttl("client:c1") == 3600
    assert ttl("template:t1") == 3600

    assert run(cache.get_company_settings()) == {"name": "Acme"}
    assert run(cache.get_tax_rates()) == {"vat": 7}
    assert run(cache.get_template("t1")) == {"id": "t1"}


def test_delete_missing_key_is_false(cache):
    assert run(cache.delete("quote:nope")) is False
    assert run(cache.invalidate_quote("nope")) is False
    assert run(cache.invalidate_client("nope")) is False
    assert run(cache.invalidate_template("nope")) is False
    assert run(cache.invalidate_user_session("nope")) is False
    assert run(cache.invalidate_dashboard_stats("nope")) is False
    assert run(cache.invalidate_company_settings()) is False
    assert run(cache.invalidate_tax_rates()) is False


def test_bulk_invalidation(cache):
    run(cache.cache_user_session("u1", {"id": "u1"}))
    run(cache.cache_dashboard_stats("u1", {"n": 1}))
    run(cache.cache_quote("Q-1", {"total": 1}))
    run(cache.cache_client("C-1", {"id": "C-1"}))

    run(cache.invalidate_user_data("u1"))
    run(cache.invalidate_quote_related_data("Q-1", "C-1"))

    assert run(cache.get_user_session("u1")) is None
    assert run(cache.get_dashboard_stats("u1")) is None
    assert run(cache.get_quote("Q-1")) is None
    assert run(cache.get_client("C-1")) is None


def test_health_check(cache, fake_redis):
    assert run(cache.health_check()) is True
    assert "health:check" not in fake_redis.store


def test_disabled_store_degrades(settings):
    disabled = CacheService.from_settings(settings.model_copy(update={"redis_enabled": False}))
    run(disabled.connect())
    assert disabled.enabled is False
    assert run(disabled.set("quote:Q-1", {"a": 1})) is False
    assert run(disabled.get("quote:Q-1")) is None
    assert run(disabled.exists("quote:Q-1")) is False
    assert run(disabled.delete("quote:Q-1")) is False


def test_unreachable_store_degrades(cache, fake_redis):
    fake_redis.down = True
    assert run(cache.set("quote:Q-1", {"a": 1})) is False
    assert run(cache.get("quote:Q-1")) is None
    assert run(cache.delete("quote:Q-1")) is False
    assert run(cache.health_check()) is False


def test_failed_connect_disables_client(fake_redis):
    fake_redis.down = True
    client = RedisClient("redis://unused", client=fake_redis)
    client._connected = False
    with pytest.raises(ConnectionError):
        run(client.connect())
    assert client.enabled is False
    assert client.is_ready() is False


def test_unserializable_value_is_not_cached(cache):
    looped = []
    looped.append(looped)
    assert run(cache.set("quote:Q-2", looped)) is False
    assert run(cache.get("quote:Q-2")) is None


def test_expire_and_ttl(cache, fake_redis):
    redis = cache.redis
    assert run(redis.set("k", "v")) is True
    assert run(redis.ttl("k")) == -1
    assert run(redis.expire("k", 5)) is True
    fake_redis.advance(5)
    assert run(redis.get("k")) is None
    assert run(redis.expire("k", 5)) is False
