"""
SQLite-backed datastore for sound-share.

Persists the JSON tree locally, so a single machine can run the full
friend and review workflow without a Firebase project.

Schema:
    schema_version:  Single row with the schema version
    nodes:           One row per leaf: path ("users/u1/friends/u2/name")
                     and its JSON-encoded scalar value

Only leaves are stored. A branch exists while at least one leaf lives
under it, which gives the "empty containers do not exist" rule for free.

A subtree is read with a range scan: every descendant of "a/b" has a
path in ["a/b/", "a/b0"), because "0" is the character right after "/".

Change notifications are delivered to subscribers in this process only.
Writes made by another process sharing the file are seen by the next
get(), not pushed to open subscriptions.

Usage:
    store = SqliteDatastore(Path("~/.sound_share/datastore.db").expanduser())
    store.set("users/u1/name", "Alice")
    print(store.get("users/u1").value)  # {"name": "Alice"}
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sound_share.core.exceptions import DatastoreError
from sound_share.datastore.base import LocalDatastore


DATABASE_VERSION = 1


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS nodes (
    path TEXT PRIMARY KEY,
    value TEXT NOT NULL  -- JSON scalar
);
"""


def _flatten(prefix: str, value: Any, rows: list[tuple[str, str]]) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            _flatten(f"{prefix}/{key}" if prefix else key, child, rows)
    else:
        rows.append((prefix, json.dumps(value)))


class SqliteDatastore(LocalDatastore):
    """
    Thread-safe SQLite datastore.

    Uses a single persistent connection guarded by the datastore lock.

    Attributes:
        db_path: Location of the database file.
    """

    def __init__(self, db_path: Path, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

        if not db_path.parent.exists():
            try:
                db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DatastoreError(
                    f"Cannot create datastore directory: {db_path.parent}",
                    details={"path": str(db_path.parent), "original_error": str(e)}
                ) from e

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise DatastoreError(
                f"Failed to initialize datastore: {e}",
                details={"path": str(db_path)}
            ) from e

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # Thread safety comes from self._lock
            )
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run statements in one transaction; sqlite errors become DatastoreError."""
        conn = self._connection()
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise DatastoreError(
                f"Datastore query failed: {e}",
                details={"path": str(self.db_path), "original_error": str(e)}
            ) from e

    def _init_database(self) -> None:
        conn = self._connection()
        conn.executescript(_SCHEMA_SQL)

        row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
        if row is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
        elif row[0] != DATABASE_VERSION:
            raise DatastoreError(
                f"Datastore version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                details={"expected": DATABASE_VERSION, "actual": row[0]}
            )
        conn.commit()

    def close(self) -> None:
        """Close the datastore and its database connection."""
        super().close()
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # =========================================================================
    # Tree storage
    # =========================================================================

    def _read(self, parts: list[str]) -> Any:
        path = "/".join(parts)
        with self._transaction() as conn:
            if path:
                rows = conn.execute(
                    "SELECT path, value FROM nodes WHERE path = ? OR (path >= ? AND path < ?)",
                    (path, path + "/", path + "0")
                ).fetchall()
            else:
                rows = conn.execute("SELECT path, value FROM nodes").fetchall()

        if not rows:
            return None

        tree: dict[str, Any] = {}
        for row_path, raw in rows:
            value = json.loads(raw)
            if row_path == path:
                return value
            relative = row_path[len(path) + 1:] if path else row_path
            keys = relative.split("/")
            node = tree
            for key in keys[:-1]:
                node = node.setdefault(key, {})
            node[keys[-1]] = value
        return tree

    def _delete_subtree(self, conn: sqlite3.Connection, path: str) -> None:
        if path:
            conn.execute(
                "DELETE FROM nodes WHERE path = ? OR (path >= ? AND path < ?)",
                (path, path + "/", path + "0")
            )
        else:
            conn.execute("DELETE FROM nodes")

    def _write(self, parts: list[str], value: Any) -> None:
        path = "/".join(parts)
        rows: list[tuple[str, str]] = []
        _flatten(path, value, rows)
        # The root can only hold a branch
        rows = [row for row in rows if row[0]]

        with self._transaction() as conn:
            self._delete_subtree(conn, path)
            # A scalar stored at an ancestor is replaced by the new branch
            for depth in range(1, len(parts)):
                conn.execute("DELETE FROM nodes WHERE path = ?", ("/".join(parts[:depth]),))
            conn.executemany("INSERT INTO nodes (path, value) VALUES (?, ?)", rows)

    def _delete(self, parts: list[str]) -> None:
        with self._transaction() as conn:
            self._delete_subtree(conn, "/".join(parts))
