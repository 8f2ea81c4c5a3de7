"""
Local Store Schema
One row per storage key, each holding the JSON serialization of a collection.
"""

SCHEMA = """
-- =============================================================================
-- KV_STORE - Durable key/value storage for the on-device snapshot
-- =============================================================================
-- Keys: clinic_patients, clinic_appointments, clinic_templates, clinic_settings,
--       clinic_birthday_notified, clinic_recall_notified
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""
