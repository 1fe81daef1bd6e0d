import asyncio
import json

from redis.exceptions import ConnectionError as RedisConnectionError

from tokenfeed.cache import CacheStore, MemoryBackend, RedisBackend, build_cache_store
from tokenfeed.config.settings import Settings


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expirations: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.store[key] = value
        self.expirations[key] = ttl


class BrokenRedis:
    async def get(self, key: str) -> str | None:
        raise RedisConnectionError("connection refused")

    async def setex(self, key: str, ttl: int, value: str) -> None:
        raise RedisConnectionError("connection refused")


def test_memory_roundtrip_until_expiry() -> None:
    clock = FakeClock()
    store = CacheStore(MemoryBackend(clock=clock), clock=clock)

    asyncio.run(store.set("tokens:all", [{"address": "A1"}], ttl_seconds=30))
    assert asyncio.run(store.get("tokens:all")) == [{"address": "A1"}]

    clock.now += 29.9
    assert asyncio.run(store.get("tokens:all")) == [{"address": "A1"}]

    clock.now += 0.1
    assert asyncio.run(store.get("tokens:all")) is None


def test_zero_ttl_is_absent_immediately() -> None:
    clock = FakeClock()
    memory = CacheStore(MemoryBackend(clock=clock), clock=clock)
    fake = FakeRedis()
    redis_store = CacheStore(RedisBackend(fake), clock=clock)

    for store in (memory, redis_store):
        asyncio.run(store.set("k", {"v": 1}, ttl_seconds=0))
        assert asyncio.run(store.get("k")) is None

    # Redis still holds the entry, the envelope expiry decides.
    assert "k" in fake.store
    assert fake.expirations["k"] == 1


def test_redis_entry_read_after_wall_clock_expiry_is_absent() -> None:
    clock = FakeClock()
    fake = FakeRedis()
    store = CacheStore(RedisBackend(fake), clock=clock)

    asyncio.run(store.set("agg:key", ["x"], ttl_seconds=5))
    assert fake.expirations["agg:key"] == 5
    assert json.loads(fake.store["agg:key"])["value"] == ["x"]
    assert asyncio.run(store.get("agg:key")) == ["x"]

    clock.now += 5
    assert asyncio.run(store.get("agg:key")) is None


def test_never_set_key_is_absent() -> None:
    store = CacheStore(MemoryBackend())
    assert asyncio.run(store.get("missing")) is None


def test_backend_failure_behaves_like_a_miss() -> None:
    store = CacheStore(RedisBackend(BrokenRedis()))

    asyncio.run(store.set("tokens:all", [1, 2, 3], ttl_seconds=30))
    assert asyncio.run(store.get("tokens:all")) is None


def test_corrupt_entry_is_a_miss() -> None:
    fake = FakeRedis()
    fake.store["k"] = "not json"
    store = CacheStore(RedisBackend(fake))

    assert asyncio.run(store.get("k")) is None


def test_backend_selection_follows_redis_url() -> None:
    assert build_cache_store(Settings(redis_url=None)).backend.name == "memory"
    assert build_cache_store(Settings(redis_url="redis://localhost:6379/0")).backend.name == "redis"
