# tests/test_local_cache.py

import threading

import pytest

from trainhub.services.cache import BOOKINGS, SESSIONS, FileCache, MemoryCache, RedisCache


class _DictRedis:
    """Just the two commands RedisCache issues."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value


@pytest.fixture(params=["memory", "file", "redis"])
def any_cache(request, tmp_path):
    if request.param == "memory":
        return MemoryCache()
    if request.param == "file":
        return FileCache(tmp_path / "cache")
    return RedisCache(_DictRedis(), prefix="test:training")


def test_put_appends_then_replaces_in_place(any_cache):
    any_cache.put(BOOKINGS, {"id": "a", "v": 1})
    any_cache.put(BOOKINGS, {"id": "b", "v": 1})
    any_cache.put(BOOKINGS, {"id": "a", "v": 2})

    assert any_cache.scan(BOOKINGS) == [{"id": "a", "v": 2}, {"id": "b", "v": 1}]


def test_update_and_get(any_cache):
    any_cache.put(SESSIONS, {"id": "s", "status": "scheduled", "title": "t"})

    updated = any_cache.update(SESSIONS, "s", {"status": "active"})

    assert updated == {"id": "s", "status": "active", "title": "t"}
    assert any_cache.get(SESSIONS, "s")["status"] == "active"
    assert any_cache.update(SESSIONS, "missing", {"status": "active"}) is None


def test_scan_with_predicate(any_cache):
    any_cache.put_many(BOOKINGS, [{"id": str(i), "even": i % 2 == 0} for i in range(6)])

    assert [r["id"] for r in any_cache.scan(BOOKINGS, lambda r: r["even"])] == ["0", "2", "4"]


def test_unknown_collection(any_cache):
    with pytest.raises(KeyError):
        any_cache.get("payments", "x")


def test_file_cache_survives_restart_and_corruption(tmp_path):
    directory = tmp_path / "cache"
    FileCache(directory).put(BOOKINGS, {"id": "a"})

    assert FileCache(directory).get(BOOKINGS, "a") == {"id": "a"}

    (directory / "training_sessions.json").write_text("{not json")
    assert FileCache(directory).scan(SESSIONS) == []


def test_concurrent_writers_do_not_lose_updates(tmp_path):
    cache = FileCache(tmp_path / "cache")

    def writer(offset):
        for i in range(25):
            cache.put(BOOKINGS, {"id": f"{offset}-{i}"})

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache.scan(BOOKINGS)) == 100


def test_redis_cache_key_layout():
    client = _DictRedis()
    RedisCache(client).put(BOOKINGS, {"id": "a"})

    assert list(client.data) == ["cache:training:bookings"]
