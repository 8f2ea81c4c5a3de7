"""Persistent key/value store holding the on-device snapshot."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from .connection import get_connection, init_database

logger = logging.getLogger(__name__)

PATIENTS_KEY = "clinic_patients"
APPOINTMENTS_KEY = "clinic_appointments"
TEMPLATES_KEY = "clinic_templates"
SETTINGS_KEY = "clinic_settings"
BIRTHDAY_NOTIFIED_KEY = "clinic_birthday_notified"
RECALL_NOTIFIED_KEY = "clinic_recall_notified"


class LocalStore:
    """Durable string storage keyed by collection name.

    Every write commits immediately; there is no batching across keys.
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path
        init_database(db_path)

    def get(self, key: str) -> str | None:
        """Get the raw stored string for a key."""
        conn = get_connection(self.db_path)
        cursor = conn.cursor()
        cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = cursor.fetchone()
        conn.close()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        """Store a raw string under a key, replacing any previous value."""
        conn = get_connection(self.db_path)
        conn.execute(
            """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
            (key, value, datetime.now().isoformat()),
        )
        conn.commit()
        conn.close()

    def remove(self, key: str) -> None:
        conn = get_connection(self.db_path)
        conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        conn.commit()
        conn.close()

    def get_json(self, key: str, default: Any = None) -> Any:
        """Load a JSON value, falling back to default when missing or malformed."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding malformed JSON stored under %s", key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, ensure_ascii=False))
