"""SQLite backend."""

import json
import logging
import sqlite3
import time
from typing import Any, List, Optional

from .. import transport
from ..exceptions import BackendError
from .base import IndexDescriptor
from .tree import TreeBackend

logger = logging.getLogger(__name__)


class SQLiteBackend(TreeBackend):
    """SQLite backend.

    Each top-level child of the root node is stored as one row holding the
    JSON-encoded transport envelope of its value, so timestamps, binary data
    and path references survive a reconnect.

    Example:
        backend = SQLiteBackend()
        backend.connect(path="app.db")

        # Or in-memory
        backend.connect(path=":memory:")
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._conn: Optional[sqlite3.Connection] = None
        self._path: Optional[str] = None

    def connect(self, path: str = ":memory:", **kwargs) -> None:
        """Connect to SQLite database.

        Args:
            path: Database file path, or ":memory:" for in-memory database
        """
        self._path = path
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._create_tables()
            self._indexes = self._load_indexes()
        except sqlite3.Error as e:
            raise BackendError(f"Failed to open SQLite database \"{path}\": {e}") from e
        logger.debug("Connected to SQLite database \"%s\"", path)
        super().connect()

    def _create_tables(self) -> None:
        """Create the nodes and indexes tables if they don't exist."""
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS nodes (
                key TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS indexes (
                path TEXT NOT NULL,
                key TEXT NOT NULL,
                created_at REAL NOT NULL,
                PRIMARY KEY (path, key)
            )
            """
        )
        self._conn.commit()

    def _load_indexes(self) -> List[IndexDescriptor]:
        cursor = self._conn.execute(
            "SELECT path, key, created_at FROM indexes ORDER BY created_at"
        )
        return [
            IndexDescriptor(path=row["path"], key=row["key"], created_at=row["created_at"])
            for row in cursor
        ]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.debug("Closed SQLite database \"%s\"", self._path)
        super().close()

    def _read(self, key: str) -> Any:
        try:
            row = self._conn.execute(
                "SELECT data FROM nodes WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise BackendError(f"Failed to read \"{key}\": {e}") from e
        if row is None:
            return None
        return transport.deserialize(json.loads(row["data"]))

    def _write(self, key: str, value: Any) -> None:
        try:
            if value is None:
                self._conn.execute("DELETE FROM nodes WHERE key = ?", (key,))
            else:
                self._conn.execute(
                    """
                    INSERT INTO nodes (key, data, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        data = excluded.data,
                        updated_at = excluded.updated_at
                    """,
                    (key, json.dumps(transport.serialize(value)), time.time()),
                )
            self._conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise BackendError(f"Failed to write \"{key}\": {e}") from e

    def _keys(self) -> List[str]:
        try:
            cursor = self._conn.execute("SELECT key FROM nodes ORDER BY rowid")
        except sqlite3.Error as e:
            raise BackendError(f"Failed to list keys: {e}") from e
        return [row["key"] for row in cursor]

    def _save_index(self, index: IndexDescriptor) -> None:
        try:
            self._conn.execute(
                "INSERT OR IGNORE INTO indexes (path, key, created_at) VALUES (?, ?, ?)",
                (index.path, index.key, index.created_at),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise BackendError(f"Failed to save index on \"{index.path}\": {e}") from e
