"""
hiverewarder/checkpoint.py

Durable sync cursor: the highest account-history index fully processed.

The cursor lives in a single-row SQLite table so the update is atomic. It is
only advanced after a whole reward cycle succeeded; a crash at any earlier
point leaves the previous value in place and the next run re-fetches the
same operations.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional, Union

from .errors import CheckpointError

logger = logging.getLogger("hiverewarder.checkpoint")


_SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_index INTEGER
);
INSERT OR IGNORE INTO sync_state (id, last_index) VALUES (1, 0);
"""


class SyncCheckpoint:
    """
    Single-row cursor over the pool account's operation history.

    Usage:
        with SyncCheckpoint("data/sync.db") as checkpoint:
            last = checkpoint.get_last_index()
            ...
            checkpoint.set_last_index(latest)
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    def open(self) -> "SyncCheckpoint":
        """Open the database, creating the table on first use."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
            logger.info(f"Sync database initialized: {self.db_path}")
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        return self._conn

    def get_last_index(self) -> int:
        """
        Get the last fully processed history index.

        Returns:
            Index, 0 when nothing has been processed yet
        """
        row = self._connection().execute(
            "SELECT last_index FROM sync_state WHERE id = 1"
        ).fetchone()
        if row is None or row[0] is None:
            return 0
        return int(row[0])

    def set_last_index(self, index: int) -> None:
        """
        Advance the cursor.

        Args:
            index: New last processed index

        Raises:
            CheckpointError: If index would move the cursor backwards
        """
        current = self.get_last_index()
        if index < current:
            raise CheckpointError(
                f"Refusing to move sync cursor backwards ({current} -> {index})"
            )
        conn = self._connection()
        with conn:
            conn.execute("UPDATE sync_state SET last_index = ? WHERE id = 1", (int(index),))
        logger.info(f"Updated last processed index to: {index}")

    def __enter__(self) -> "SyncCheckpoint":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
