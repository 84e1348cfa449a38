from unittest.mock import MagicMock, patch

import pytest
import redis

from cartsync.data.kv_store import (
    FileKeyValueStore,
    MemoryKeyValueStore,
    RedisKeyValueStore,
    build_store,
)


def test_memory_store_get_set_remove():
    store = MemoryKeyValueStore({"a": "1"})

    assert store.get("a") == "1"
    assert store.get("missing") is None

    store.set("b", "2")
    store.remove("a")
    store.remove("never-there")

    assert store.get("a") is None
    assert store.get("b") == "2"


def test_file_store_persists_between_instances(tmp_path):
    path = tmp_path / "nested" / "store.json"
    FileKeyValueStore(path).set("guest_cart", "[]")

    reopened = FileKeyValueStore(path)
    assert reopened.get("guest_cart") == "[]"

    reopened.remove("guest_cart")
    assert FileKeyValueStore(path).get("guest_cart") is None


def test_file_store_leaves_no_temp_files(tmp_path):
    store = FileKeyValueStore(tmp_path / "store.json")
    store.set("a", "1")
    store.set("b", "2")

    assert [p.name for p in tmp_path.iterdir()] == ["store.json"]


def test_file_store_rejects_non_object_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    with pytest.raises(ValueError):
        FileKeyValueStore(path).get("a")


@pytest.fixture
def redis_mock():
    client = MagicMock()
    with patch("cartsync.data.kv_store.redis.Redis.from_url", return_value=client) as from_url:
        yield client, from_url


def test_redis_store_uses_namespace_and_ttl(redis_mock):
    client, from_url = redis_mock
    store = RedisKeyValueStore(url="redis://localhost:6379/1", namespace="shop", ttl=60)

    from_url.assert_called_once_with("redis://localhost:6379/1", decode_responses=True)

    store.set("guest_cart", "[]")
    client.set.assert_called_once_with("shop:guest_cart", "[]", ex=60)

    client.get.return_value = "[]"
    assert store.get("guest_cart") == "[]"
    client.get.assert_called_once_with("shop:guest_cart")

    store.remove("guest_cart")
    client.delete.assert_called_once_with("shop:guest_cart")


def test_redis_store_without_ttl_never_expires(redis_mock):
    client, _ = redis_mock
    store = RedisKeyValueStore(url="redis://localhost", namespace="", ttl=0)

    store.set("k", "v")

    client.set.assert_called_once_with("k", "v", ex=None)


def test_redis_store_retries_transient_errors(redis_mock):
    client, _ = redis_mock
    client.get.side_effect = [redis.ConnectionError("connection reset"), "value"]
    store = RedisKeyValueStore(url="redis://localhost", namespace="shop", ttl=0)

    assert store.get("k") == "value"
    assert client.get.call_count == 2


def test_redis_store_gives_up_after_three_attempts(redis_mock):
    client, _ = redis_mock
    client.set.side_effect = redis.ConnectionError("down")
    store = RedisKeyValueStore(url="redis://localhost", namespace="shop", ttl=0)

    with pytest.raises(redis.ConnectionError):
        store.set("k", "v")
    assert client.set.call_count == 3


def test_build_store_backends(tmp_path, redis_mock):
    assert isinstance(build_store("memory"), MemoryKeyValueStore)

    file_store = build_store("file", path=tmp_path / "s.json")
    assert isinstance(file_store, FileKeyValueStore)
    assert file_store.path == tmp_path / "s.json"

    redis_store = build_store("REDIS", url="redis://localhost", namespace="x", ttl=5)
    assert isinstance(redis_store, RedisKeyValueStore)
    assert redis_store.ttl == 5

    with pytest.raises(ValueError):
        build_store("sqlite")
