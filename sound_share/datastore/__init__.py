"""
Real-time datastore for sound-share.

This module provides the JSON tree the social graph and reviews live in:
    - base: Snapshot, Subscription, path validation, push ids
    - memory: In-process backend for tests
    - sqlite: Local persistent backend
    - firebase: Firebase Realtime Database over REST and event streams

Usage:
    from sound_share.datastore import SqliteDatastore

    store = SqliteDatastore(db_path)
    with store.subscribe("users/u1/friends") as friends:
        for snapshot in friends:
            print(snapshot.value)
"""

from sound_share.datastore.base import (
    HIGH_SENTINEL,
    Datastore,
    PushIdGenerator,
    Snapshot,
    Subscription,
    join_path,
    split_path,
    validate_key,
)
from sound_share.datastore.firebase import FirebaseDatastore
from sound_share.datastore.memory import MemoryDatastore
from sound_share.datastore.sqlite import SqliteDatastore

__all__ = [
    "HIGH_SENTINEL",
    "Datastore",
    "PushIdGenerator",
    "Snapshot",
    "Subscription",
    "join_path",
    "split_path",
    "validate_key",
    "FirebaseDatastore",
    "MemoryDatastore",
    "SqliteDatastore",
]
