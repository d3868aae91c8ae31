"""Test the in-memory datastore and the shared datastore primitives"""

import random

import pytest

from sound_share.core.exceptions import DatastoreError
from sound_share.datastore.base import (
    HIGH_SENTINEL,
    PushIdGenerator,
    Snapshot,
    filter_by_key,
    join_path,
    normalize_value,
    split_path,
)
from sound_share.datastore.memory import MemoryDatastore


class TestPaths:
    """Test key validation and path helpers"""

    def test_split_and_join(self):
        assert split_path("/users/u1/friends/") == ["users", "u1", "friends"]
        assert split_path("") == []
        assert join_path("users", "u1") == "users/u1"

    @pytest.mark.parametrize("bad_key", ["a.b", "a$", "a#", "a[0]", "", "tab\there"])
    def test_invalid_keys(self, bad_key):
        """Keys Firebase would reject are rejected"""
        with pytest.raises(DatastoreError):
            join_path("users", bad_key)

    def test_normalize_value(self):
        """Lists become index dicts, None and empty containers vanish"""
        assert normalize_value(["a", "b"]) == {"0": "a", "1": "b"}
        assert normalize_value({"a": None, "b": {}, "c": 1}) == {"c": 1}
        assert normalize_value({}) is None

    def test_snapshot_children_sorted(self):
        snapshot = Snapshot("users", {"b": 1, "a": 2})
        assert [child.key for child in snapshot.children()] == ["a", "b"]
        assert snapshot.child("missing").exists() is False

    def test_filter_by_key(self):
        value = {"al": 1, "alice": 2, "bob": 3}
        assert filter_by_key(value, "al", "al" + HIGH_SENTINEL, None) == {"al": 1, "alice": 2}
        assert filter_by_key(value, None, None, 1) == {"al": 1}
        assert filter_by_key(value, "z", None, None) is None


class TestPushIdGenerator:
    """Test push key ordering"""

    def test_keys_sort_by_creation(self):
        """Later keys sort after earlier ones, even within one millisecond"""
        generate = PushIdGenerator(clock=lambda: 1_700_000_000.0, rng=random.Random(1))
        keys = [generate() for _ in range(50)]

        assert keys == sorted(keys)
        assert len(set(keys)) == 50
        assert all(len(key) == 20 for key in keys)

    def test_time_prefix(self):
        now = [1_700_000_000.0]
        generate = PushIdGenerator(clock=lambda: now[0])
        first = generate()
        now[0] += 1
        assert generate()[:8] > first[:8]


class TestMemoryDatastore:
    """Test MemoryDatastore reads and writes"""

    def test_set_get(self, store):
        store.set("users/u1/name", "Alice")

        assert store.get("users/u1/name").value == "Alice"
        assert store.get("users").value == {"u1": {"name": "Alice"}}
        assert store.get("users/u2").exists() is False

    def test_set_none_deletes_and_prunes(self, store):
        """Removing the last child removes the parent"""
        store.set("users/u1/friends/u2", {"name": "Bob"})
        store.set("users/u1/friends/u2", None)

        assert store.get("users/u1").exists() is False
        assert store.get("").exists() is False

    def test_remove_is_idempotent(self, store):
        store.set("a/b", 1)
        store.remove("a/b")
        store.remove("a/b")
        assert store.get("a").value is None

    def test_snapshots_are_copies(self, store):
        """Mutating a snapshot doesn't change the store"""
        store.set("a", {"b": 1})
        store.get("a").value["b"] = 2
        assert store.get("a/b").value == 1

    def test_update_multi_path(self, store):
        """update() writes several children at once, None deletes"""
        store.set("users/u1/x", 1)
        store.update("users/u1", {"name": "Ann", "friends/u2": {"name": "Bob"}, "x": None})

        assert store.get("users/u1").value == {"name": "Ann", "friends": {"u2": {"name": "Bob"}}}

    def test_push(self, store):
        """push() returns ordered keys"""
        first = store.push("reviews", {"rating": 1})
        second = store.push("reviews", {"rating": 2})

        assert first < second
        assert store.get(f"reviews/{second}/rating").value == 2

    def test_query_by_key_prefix(self, store):
        """The high sentinel bound turns a range into a prefix match"""
        store.set("users", {"alice": {"name": "A"}, "alfred": {"name": "F"}, "bob": {"name": "B"}})

        result = store.query_by_key("users", start_at="al", end_at="al" + HIGH_SENTINEL)

        assert list(result.value) == ["alfred", "alice"]

    def test_scalar_replaced_by_branch(self, store):
        store.set("a", 1)
        store.set("a/b", 2)
        assert store.get("a").value == {"b": 2}

    def test_closed_store(self, store):
        store.close()
        with pytest.raises(DatastoreError):
            store.get("a")


class TestSubscriptions:
    """Test subscribe() semantics"""

    def test_current_value_first_then_changes(self, store):
        """The first item is the current value"""
        store.set("users/u1/friends/u2", {"name": "Bob"})
        subscription = store.subscribe("users/u1/friends")
        items = iter(subscription)

        assert next(items).value == {"u2": {"name": "Bob"}}

        store.set("users/u1/friends/u3", {"name": "Cat"})
        assert set(next(items).value) == {"u2", "u3"}

        subscription.cancel()
        with pytest.raises(StopIteration):
            next(items)

    def test_missing_path_delivers_none(self, store):
        with store.subscribe("nothing/here") as subscription:
            items = iter(subscription)
            assert next(items).exists() is False

    def test_unrelated_and_unchanged_writes_are_not_delivered(self, store):
        """Only real changes to the subtree are delivered"""
        store.set("a/x", 1)
        subscription = store.subscribe("a")
        items = iter(subscription)
        next(items)

        store.set("b/y", 1)     # unrelated path
        store.set("a/x", 1)     # same value
        store.set("a/x", 2)

        assert next(items).value == {"x": 2}
        subscription.cancel()

    def test_ancestor_write_is_delivered(self, store):
        """Replacing a parent notifies subscribers below it"""
        subscription = store.subscribe("a/b")
        items = iter(subscription)
        next(items)

        store.set("a", {"b": {"c": 1}})

        assert next(items).value == {"c": 1}
        subscription.cancel()

    def test_restart_from_current_value(self, store):
        """A second iteration starts over with the current value"""
        store.set("a", 1)
        subscription = store.subscribe("a")

        first = iter(subscription)
        assert next(first).value == 1
        first.close()

        store.set("a", 2)
        second = iter(subscription)
        assert next(second).value == 2
        subscription.cancel()

    def test_map(self, store):
        """map() transforms every item"""
        store.set("a", {"x": 1, "y": 2})
        with store.subscribe("a").map(lambda snapshot: sorted(snapshot.value)) as keys:
            assert next(iter(keys)) == ["x", "y"]

    def test_cancelled_subscription_yields_nothing(self, store):
        subscription = store.subscribe("a")
        store.unsubscribe(subscription)
        assert list(subscription) == []

    def test_close_ends_with_error(self, store):
        """Closing the store ends active iterations with DatastoreError"""
        subscription = store.subscribe("a")
        items = iter(subscription)
        next(items)

        store.close()

        with pytest.raises(DatastoreError):
            next(items)
