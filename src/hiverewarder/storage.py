"""
hiverewarder/storage.py

JSON document store for the data directory.

Every persisted document (delegation history, balances, payout log, payout
summary, pool config) is a plain JSON file under one directory. Reads fall
back to a default when a file is missing or unreadable; writes are atomic
so a crash mid-write never leaves a truncated document behind.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Union

logger = logging.getLogger("hiverewarder.storage")


class JsonStore:
    """
    Key-value store of JSON documents, one file per key.

    Usage:
        store = JsonStore("data")
        balances = store.load("delegator_balances.json", {})
        store.save("delegator_balances.json", balances)
    """

    def __init__(self, data_dir: Union[str, Path]):
        """
        Initialize the store.

        Args:
            data_dir: Directory holding the JSON documents
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path(self, filename: str) -> Path:
        """Absolute path of a document."""
        return self.data_dir / filename

    def load(self, filename: str, fallback: Any = None) -> Any:
        """
        Load a JSON document.

        A missing file or a file that fails to parse yields ``fallback``.

        Args:
            filename: Document name inside the data directory
            fallback: Value returned when the document is unavailable

        Returns:
            Parsed JSON value or fallback
        """
        file_path = self.path(filename)
        if not file_path.exists():
            logger.warning(f"{filename} not found, using fallback")
            return fallback
        try:
            # utf-8-sig strips a leading BOM left by some editors
            with open(file_path, "r", encoding="utf-8-sig") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {filename}: {e}")
            return fallback

    def save(self, filename: str, data: Any) -> None:
        """
        Atomically write a JSON document.

        Args:
            filename: Document name inside the data directory
            data: JSON-serialisable value
        """
        file_path = self.path(filename)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{filename}.", suffix=".tmp", dir=str(self.data_dir)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, file_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Saved {filename}")
