"""LocalStore 테스트."""

from __future__ import annotations

import pytest

from apps.cache_machine.infrastructure.cache.local_store import LocalStore


@pytest.fixture
def store() -> LocalStore:
    store = LocalStore()
    store.watch("Customer")
    with store.lock:
        bucket = store.bucket("Customer")
        bucket[1] = {"id": 1, "name": "Ann", "tier": "gold"}
        bucket[2] = {"id": 2, "name": "Bob", "tier": "gold"}
        bucket[3] = {"id": 3, "name": "Cid", "tier": "silver"}
    return store


class TestLocalStore:
    """LocalStore 테스트."""

    def test_unwatched_vs_empty_bucket(self) -> None:
        store = LocalStore()
        assert store.bucket("Customer") is None
        assert store.is_watched("Customer") is False

        store.watch("Customer")

        assert store.bucket("Customer") == {}
        assert store.is_watched("Customer") is True

    def test_watch_keeps_existing_bucket(self, store: LocalStore) -> None:
        store.watch("Customer")
        assert store.count("Customer") == 3

    def test_get(self, store: LocalStore) -> None:
        assert store.get("Customer", 1)["name"] == "Ann"
        assert store.get("Customer", 99) is None
        assert store.get("Order", 1) is None

    def test_keys_are_not_normalized(self, store: LocalStore) -> None:
        assert store.get("Customer", "1") is None

    def test_find_one(self, store: LocalStore) -> None:
        assert store.find_one("Customer", "name", "Bob")["id"] == 2
        assert store.find_one("Customer", "name", "Zed") is None

    def test_find_all(self, store: LocalStore) -> None:
        ids = sorted(r["id"] for r in store.find_all("Customer", "tier", "gold"))
        assert ids == [1, 2]

    def test_filter(self, store: LocalStore) -> None:
        result = store.filter("Customer", lambda r: r["id"] > 1)
        assert sorted(r["id"] for r in result) == [2, 3]
        assert store.filter("Order", lambda r: True) == []

    def test_count(self, store: LocalStore) -> None:
        store.watch("Order")
        assert store.count() == 3
        assert store.count("Order") == 0

    def test_snapshot_is_a_copy(self, store: LocalStore) -> None:
        snapshot = store.snapshot()
        snapshot["Customer"].pop(1)
        assert store.get("Customer", 1) is not None

    def test_clear(self, store: LocalStore) -> None:
        store.clear()
        assert store.watched_models() == []
