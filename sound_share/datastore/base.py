"""
Real-time datastore primitives.

The datastore is a JSON tree addressed by slash-separated paths
("users/abc/friends/def"), with the semantics of the Firebase Realtime
Database:

    - Writing None (or an empty dict) at a path deletes it
    - Empty containers do not exist; deleting the last child of a node
      deletes the node
    - Lists are stored as dicts keyed "0", "1", ...
    - Keys are non-empty and may not contain . $ # [ ] / or control chars

Reads come in two flavours: one-shot get() and subscribe(), which returns a
Subscription. Iterating a Subscription yields the current value first and
then a new Snapshot after every change to the subscribed subtree; it blocks
in between. Iterating again starts over from the current value. cancel()
(or Datastore.unsubscribe()) stops delivery and ends every active iteration.

    with store.subscribe("users/abc/friends") as friends:
        for snapshot in friends:
            render(snapshot.value)
"""

import queue
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol

from sound_share.core.exceptions import DatastoreError
from sound_share.core.logger import get_logger


logger = get_logger(__name__)


# Highest code point in the BMP private use area, sorts after any real key
# character. prefix .. prefix + HIGH_SENTINEL covers every key with that prefix.
HIGH_SENTINEL = "\uf8ff"

INVALID_KEY_CHARS = frozenset(".$#[]/")

# Firebase limit on a single key, in UTF-8 bytes
MAX_KEY_BYTES = 768


def validate_key(key: str) -> str:
    """
    Check a single path segment.

    Raises:
        DatastoreError: If the key is empty, too long or contains a
                        forbidden character.
    """
    if not isinstance(key, str) or not key:
        raise DatastoreError("Datastore keys must be non-empty strings", details={"key": key})
    if len(key.encode("utf-8")) > MAX_KEY_BYTES:
        raise DatastoreError(
            f"Datastore key is longer than {MAX_KEY_BYTES} bytes",
            details={"key": key[:50]}
        )
    for char in key:
        if char in INVALID_KEY_CHARS or ord(char) < 32 or ord(char) == 127:
            raise DatastoreError(
                f"Invalid character {char!r} in datastore key '{key}'",
                details={"key": key}
            )
    return key


def split_path(path: str) -> list[str]:
    """Split and validate a path. "" and "/" address the root."""
    return [validate_key(part) for part in path.strip("/").split("/") if part != ""]


def join_path(*parts: str) -> str:
    """Join path segments, validating each of them."""
    return "/".join(validate_key(part) for part in parts)


def normalize_value(value: Any) -> Any:
    """
    Convert a value to its stored form.

    Lists become index-keyed dicts, None children and empty containers
    are dropped. Returns None when nothing would be stored.

    Raises:
        DatastoreError: For keys that are invalid or values that are not JSON.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = {str(index): item for index, item in enumerate(value)}
    if isinstance(value, dict):
        result = {}
        for key, child in value.items():
            normalized = normalize_value(child)
            if normalized is not None:
                result[validate_key(str(key))] = normalized
        return result or None
    if isinstance(value, (str, bool, int, float)):
        return value
    raise DatastoreError(
        f"Cannot store value of type {type(value).__name__}",
        details={"type": type(value).__name__}
    )


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable view of the value at a path at one point in time.

    Attributes:
        path: Normalized path ("" for the root).
        value: JSON-like value, or None when nothing is stored there.
    """
    path: str
    value: Any

    @property
    def key(self) -> str | None:
        """Last path segment, or None for the root."""
        return self.path.rsplit("/", 1)[-1] if self.path else None

    def exists(self) -> bool:
        return self.value is not None

    def child(self, key: str) -> "Snapshot":
        child_path = f"{self.path}/{key}" if self.path else key
        if isinstance(self.value, dict):
            return Snapshot(child_path, self.value.get(key))
        return Snapshot(child_path, None)

    def children(self) -> list["Snapshot"]:
        """Child snapshots ordered by key."""
        if not isinstance(self.value, dict):
            return []
        return [self.child(key) for key in sorted(self.value)]


Listener = Callable[[Any], None]


class _Cancelled:
    pass


_CANCELLED = _Cancelled()


class Subscription:
    """
    Cancellable, restartable stream of snapshots for one path.

    The backend supplies an attach function: attach(deliver) starts
    delivering to deliver() (current value first, then changes, or a
    DatastoreError when the stream dies) and returns a detach function.
    Every iteration attaches its own queue, so two loops over the same
    subscription each see the full sequence.

    Attributes:
        path: The subscribed path.
    """

    def __init__(
        self,
        path: str,
        attach: Callable[[Listener], Callable[[], None]],
        transform: Callable[[Snapshot], Any] | None = None
    ) -> None:
        self.path = path
        self._attach = attach
        self._transform = transform
        self._lock = threading.Lock()
        self._queues: list[queue.Queue] = []
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def map(self, transform: Callable[[Any], Any]) -> "Subscription":
        """
        New subscription over the same path whose items are transform(item).

        The returned subscription is cancelled independently.
        """
        inner = self._transform
        if inner is None:
            composed = transform
        else:
            def composed(snapshot: Snapshot) -> Any:
                return transform(inner(snapshot))
        return Subscription(self.path, self._attach, composed)

    def __iter__(self) -> Iterator[Any]:
        return self._stream()

    def _stream(self) -> Iterator[Any]:
        with self._lock:
            if self._cancelled:
                return
            items: queue.Queue = queue.Queue()
            self._queues.append(items)

        try:
            detach = self._attach(items.put)
        except DatastoreError:
            self._forget(items)
            raise

        try:
            while True:
                item = items.get()
                if item is _CANCELLED or self._cancelled:
                    return
                if isinstance(item, DatastoreError):
                    raise item
                yield self._transform(item) if self._transform else item
        finally:
            detach()
            self._forget(items)

    def _forget(self, items: queue.Queue) -> None:
        with self._lock:
            if items in self._queues:
                self._queues.remove(items)

    def cancel(self) -> None:
        """Stop delivery. Idempotent; running iterations end after their current item."""
        with self._lock:
            self._cancelled = True
            active = list(self._queues)
        for items in active:
            items.put(_CANCELLED)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()


class Datastore(Protocol):
    """Operations every datastore backend provides."""

    def get(self, path: str) -> Snapshot: ...
    def set(self, path: str, value: Any) -> None: ...
    def update(self, path: str, values: dict[str, Any]) -> None: ...
    def push(self, path: str, value: Any) -> str: ...
    def remove(self, path: str) -> None: ...
    def query_by_key(
        self,
        path: str,
        start_at: str | None = None,
        end_at: str | None = None,
        limit: int | None = None
    ) -> Snapshot: ...
    def subscribe(self, path: str) -> Subscription: ...
    def unsubscribe(self, subscription: Subscription) -> None: ...
    def close(self) -> None: ...


def filter_by_key(
    value: Any,
    start_at: str | None,
    end_at: str | None,
    limit: int | None
) -> dict[str, Any] | None:
    """
    Apply an ordered-by-key range to the children of value.

    Both bounds are inclusive, compared as strings. limit keeps the first
    children in key order.
    """
    if not isinstance(value, dict):
        return None
    selected = {}
    for key in sorted(value):
        if start_at is not None and key < start_at:
            continue
        if end_at is not None and key > end_at:
            break
        selected[key] = value[key]
        if limit is not None and len(selected) >= limit:
            break
    return selected or None


class PushIdGenerator:
    """
    Generates chronologically ordered, collision-resistant keys.

    Same layout as Firebase push ids: 8 characters of millisecond timestamp
    followed by 12 random characters, all from an alphabet whose ASCII
    order matches its value order. Keys generated within the same
    millisecond increment the random part, so they still sort by
    creation order.
    """

    PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

    def __init__(self, clock: Callable[[], float] = time.time, rng: random.Random | None = None) -> None:
        self._clock = clock
        self._rng = rng or random.SystemRandom()
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random = [0] * 12

    def __call__(self) -> str:
        with self._lock:
            now_ms = int(self._clock() * 1000)
            duplicate = now_ms == self._last_ms
            self._last_ms = now_ms

            timestamp_chars = []
            remaining = now_ms
            for _ in range(8):
                timestamp_chars.append(self.PUSH_CHARS[remaining % 64])
                remaining //= 64
            timestamp = "".join(reversed(timestamp_chars))

            if not duplicate:
                self._last_random = [self._rng.randrange(64) for _ in range(12)]
            else:
                index = 11
                while index >= 0 and self._last_random[index] == 63:
                    self._last_random[index] = 0
                    index -= 1
                if index >= 0:
                    self._last_random[index] += 1

            return timestamp + "".join(self.PUSH_CHARS[i] for i in self._last_random)


def _path_relation(subscribed: list[str], written: list[str]) -> bool:
    """True when a write at written can change the value at subscribed."""
    shorter = min(len(subscribed), len(written))
    return subscribed[:shorter] == written[:shorter]


class LocalDatastore:
    """
    Base class for backends living in this process.

    Subclasses implement the tree storage (_read, _write, _delete) and
    get notification and subscription handling for free: after every
    mutation, listeners on the written path, its ancestors and its
    descendants receive a fresh snapshot if their value changed.

    All public methods hold self._lock, so readers never see a half
    applied write. Deliveries happen under the lock too, which keeps them
    in write order; listeners must not block (Subscription only enqueues).
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._lock = threading.RLock()
        self._next_push_id = PushIdGenerator(clock)
        # listener id -> (path parts, deliver, last delivered value)
        self._listeners: dict[int, tuple[list[str], Listener, Any]] = {}
        self._listener_ids = 0
        self._closed = False

    # ----- storage hooks ------------------------------------------------

    def _read(self, parts: list[str]) -> Any:
        raise NotImplementedError

    def _write(self, parts: list[str], value: Any) -> None:
        """Replace the subtree at parts with value (already normalized, not None)."""
        raise NotImplementedError

    def _delete(self, parts: list[str]) -> None:
        """Delete the subtree at parts and prune emptied ancestors."""
        raise NotImplementedError

    # ----- helpers ------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise DatastoreError("Datastore is closed")

    def _notify(self, written: list[str]) -> None:
        with self._lock:
            for listener_id, (parts, deliver, last) in list(self._listeners.items()):
                if not _path_relation(parts, written):
                    continue
                current = self._read(parts)
                if current == last:
                    continue
                self._listeners[listener_id] = (parts, deliver, current)
                deliver(Snapshot("/".join(parts), current))

    def _attach(self, parts: list[str]) -> Callable[[Listener], Callable[[], None]]:
        def attach(deliver: Listener) -> Callable[[], None]:
            with self._lock:
                self._check_open()
                self._listener_ids += 1
                listener_id = self._listener_ids
                current = self._read(parts)
                self._listeners[listener_id] = (parts, deliver, current)
                deliver(Snapshot("/".join(parts), current))

            def detach() -> None:
                with self._lock:
                    self._listeners.pop(listener_id, None)
            return detach
        return attach

    # ----- Datastore operations -----------------------------------------

    def get(self, path: str) -> Snapshot:
        parts = split_path(path)
        with self._lock:
            self._check_open()
            return Snapshot("/".join(parts), self._read(parts))

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        normalized = normalize_value(value)
        with self._lock:
            self._check_open()
            if normalized is None:
                self._delete(parts)
            else:
                self._write(parts, normalized)
        self._notify(parts)

    def update(self, path: str, values: dict[str, Any]) -> None:
        """Set several children of path in one step (multi-path keys allowed)."""
        base = split_path(path)
        changes = [(base + split_path(key), normalize_value(value)) for key, value in values.items()]
        with self._lock:
            self._check_open()
            for parts, normalized in changes:
                if normalized is None:
                    self._delete(parts)
                else:
                    self._write(parts, normalized)
        for parts, _ in changes:
            self._notify(parts)

    def push(self, path: str, value: Any) -> str:
        key = self._next_push_id()
        self.set(f"{path.strip('/')}/{key}", value)
        return key

    def remove(self, path: str) -> None:
        parts = split_path(path)
        with self._lock:
            self._check_open()
            self._delete(parts)
        self._notify(parts)

    def query_by_key(
        self,
        path: str,
        start_at: str | None = None,
        end_at: str | None = None,
        limit: int | None = None
    ) -> Snapshot:
        parts = split_path(path)
        with self._lock:
            self._check_open()
            value = self._read(parts)
        return Snapshot("/".join(parts), filter_by_key(value, start_at, end_at, limit))

    def subscribe(self, path: str) -> Subscription:
        parts = split_path(path)
        self._check_open()
        return Subscription("/".join(parts), self._attach(parts))

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.cancel()

    def close(self) -> None:
        """Close the store. Active subscriptions end with a DatastoreError."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for _, deliver, _ in self._listeners.values():
                deliver(DatastoreError("Datastore was closed"))
            self._listeners.clear()
