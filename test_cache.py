"""
Tests for the SQLite request cache.

Run: pytest test_cache.py -v
"""

from unittest.mock import patch

import pytest

import cache
from cache import SqliteCache


@pytest.fixture
def store(tmp_path):
    db = SqliteCache(str(tmp_path / "cache.sqlite3"))
    yield db
    db.close()


def test_set_and_get(store):
    store.set("reports", {"reports": [{"id": 1, "name": "Sales"}]})
    assert store.get("reports") == {"reports": [{"id": 1, "name": "Sales"}]}


def test_missing_key(store):
    assert store.get("nothing") is None


def test_expired_entry_is_deleted_on_read(store):
    with patch("cache._now_ms", return_value=1_000_000):
        store.set("key", "value", ttl=10)
    with patch("cache._now_ms", return_value=1_000_000 + 10_001):
        assert store.get("key") is None
    # gone for good, even for a reader in the past
    with patch("cache._now_ms", return_value=1_000_000):
        assert store.get("key") is None


def test_entry_alive_before_expiry(store):
    with patch("cache._now_ms", return_value=1_000_000):
        store.set("key", [1, 2], ttl=10)
    with patch("cache._now_ms", return_value=1_000_000 + 9_999):
        assert store.get("key") == [1, 2]


def test_malformed_payload_is_a_miss(store):
    store.set("key", "value")
    with store._conn:
        store._conn.execute("UPDATE cache SET value = ? WHERE key = ?", ("{not json", "key"))
    assert store.get("key") is None


def test_delete_prefix(store):
    store.set('{"path": "report/1"}', 1)
    store.set('{"path": "report/2"}', 2)
    store.set("other_key", 3)
    store.delete_prefix('{"path": "report/')
    assert store.get('{"path": "report/1"}') is None
    assert store.get('{"path": "report/2"}') is None
    assert store.get("other_key") == 3


def test_delete_prefix_escapes_wildcards(store):
    store.set("a_b", 1)
    store.set("axb", 2)
    store.delete_prefix("a_")
    assert store.get("a_b") is None
    assert store.get("axb") == 2


def test_clear(store):
    store.set("a", 1)
    store.set("b", 2)
    store.clear()
    assert store.get("a") is None
    assert store.get("b") is None


def test_cache_provider_is_shared(tmp_path):
    with patch("cache.CACHE_DB_PATH", str(tmp_path / "sub" / "cache.sqlite3")), patch("cache._provider", None):
        first = cache.get_cache_provider()
        second = cache.get_cache_provider()
        assert first is second
        assert (tmp_path / "sub" / "cache.sqlite3").exists()
        first.close()


def test_cache_clear(tmp_path):
    with patch("cache.CACHE_DB_PATH", str(tmp_path / "cache.sqlite3")), patch("cache._provider", None):
        cache.get_cache_provider().set("a", 1)
        cache.cache_clear()
        assert cache.get_cache_provider().get("a") is None
        cache.get_cache_provider().close()
