"""
Settings store backends.

The pipeline only needs three operations on a small per-user settings
record (baseline + calibration):

    get(key)            -> record dict or None
    update(key, patch)  -> number of records changed (0 if key missing)
    put(key, record)    -> replace/insert the whole record

SqliteSettingsStore keeps each record as a JSON document in a single
table. JSON floats are written with repr precision, so a stored
calibration reads back bit-identical.
"""

import copy
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_KEY = "default"


class SettingsStore:
    """Interface for settings persistence backends."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def update(self, key: str, patch: Dict[str, Any]) -> int:
        raise NotImplementedError

    def put(self, key: str, record: Dict[str, Any]) -> None:
        raise NotImplementedError


class InMemorySettingsStore(SettingsStore):
    """Process-local store. Records are deep-copied on the way in and out."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def update(self, key: str, patch: Dict[str, Any]) -> int:
        with self._lock:
            if key not in self._records:
                return 0
            self._records[key].update(copy.deepcopy(patch))
            return 1

    def put(self, key: str, record: Dict[str, Any]) -> None:
        with self._lock:
            self._records[key] = copy.deepcopy(record)


class SqliteSettingsStore(SettingsStore):
    """
    SQLite-backed settings store.

    Usage:
        store = SqliteSettingsStore("data/settings.db")
        store.put("default", {"voice_baseline": None})
        store.update("default", {"voice_biomarker_calibration": {...}})
    """

    def __init__(self, db_path: str = "data/voice_settings.db"):
        """
        Initialize settings database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"Settings database initialized: {self.db_path}")

    def _init_database(self):
        """Create the settings table if it doesn't exist."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    record TEXT NOT NULL,
                    updated_at DATETIME NOT NULL
                )
            """)
            conn.commit()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT record FROM settings WHERE key = ?", (key,))
            row = cursor.fetchone()

        if row is None:
            return None
        return json.loads(row[0])

    def update(self, key: str, patch: Dict[str, Any]) -> int:
        """Shallow-merge patch into an existing record. Returns 0 if missing."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            # Read and write inside one transaction
            cursor.execute("BEGIN IMMEDIATE")
            cursor.execute("SELECT record FROM settings WHERE key = ?", (key,))
            row = cursor.fetchone()
            if row is None:
                conn.rollback()
                return 0

            record = json.loads(row[0])
            record.update(patch)
            cursor.execute(
                "UPDATE settings SET record = ?, updated_at = ? WHERE key = ?",
                (json.dumps(record), _now_iso(), key)
            )
            conn.commit()
            changed = cursor.rowcount

        logger.debug(f"Updated settings '{key}': {sorted(patch.keys())}")
        return changed

    def put(self, key: str, record: Dict[str, Any]) -> None:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT OR REPLACE INTO settings (key, record, updated_at) VALUES (?, ?, ?)",
                (key, json.dumps(record), _now_iso())
            )
            conn.commit()

        logger.debug(f"Stored settings '{key}'")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
