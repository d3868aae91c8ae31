"""In-memory datastore, for tests and single-process demos."""

import copy
from typing import Any

from sound_share.datastore.base import LocalDatastore


class MemoryDatastore(LocalDatastore):
    """
    Datastore holding the whole tree in a nested dict.

    Snapshots are deep copies, so callers can't mutate stored data.
    """

    def __init__(self, initial: dict[str, Any] | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._root: dict[str, Any] = {}
        if initial:
            self.set("", initial)

    def _read(self, parts: list[str]) -> Any:
        node: Any = self._root
        for key in parts:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        return copy.deepcopy(node) if node != {} else None

    def _write(self, parts: list[str], value: Any) -> None:
        if not parts:
            self._root = copy.deepcopy(value) if isinstance(value, dict) else {}
            return
        node = self._root
        for key in parts[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                # A scalar in the way is replaced by a branch
                child = {}
                node[key] = child
            node = child
        node[parts[-1]] = copy.deepcopy(value)

    def _delete(self, parts: list[str]) -> None:
        if not parts:
            self._root = {}
            return
        trail = [self._root]
        node = self._root
        for key in parts[:-1]:
            node = node.get(key)
            if not isinstance(node, dict):
                return
            trail.append(node)
        node.pop(parts[-1], None)

        # Prune ancestors left empty
        for depth in range(len(parts) - 1, 0, -1):
            if trail[depth]:
                break
            trail[depth - 1].pop(parts[depth - 1], None)
