"""Upgrade stored patient records to the current shape.

Older records kept a single free-text ``treatment`` and a flat ``payments``
list on the patient. Current records own a list of ``treatments``, each with
its own payments.
"""

import logging

from clinic_sync.models import SyncSnapshot, new_id

logger = logging.getLogger(__name__)

LEGACY_FIELDS = ("treatment", "payments")


def needs_migration(raw: dict) -> bool:
    if raw.get("treatments"):
        return False
    return bool(raw.get("treatment")) or bool(raw.get("payments"))


def migrate_patient(raw: dict) -> dict:
    """Return the patient record in current shape.

    A record that already has treatments, or has nothing legacy to move,
    is returned unchanged, so applying this twice is a no-op.
    """
    if not needs_migration(raw):
        return raw

    payments = raw.get("payments") or []
    migrated = {k: v for k, v in raw.items() if k not in LEGACY_FIELDS}
    migrated["treatments"] = [{
        "id": new_id(),
        "description": raw.get("treatment") or "",
        # Anything but a list is left for validation to reject
        "payments": list(payments) if isinstance(payments, list) else payments,
        "createdAt": raw.get("createdAt"),
    }]
    if migrated["treatments"][0]["createdAt"] is None:
        del migrated["treatments"][0]["createdAt"]
    return migrated


def migrate_patients(raw_patients: list) -> tuple[list, int]:
    """Migrate a stored patient list, returning it with the count of upgraded records."""
    result = []
    count = 0
    for raw in raw_patients:
        if isinstance(raw, dict) and needs_migration(raw):
            result.append(migrate_patient(raw))
            count += 1
        else:
            result.append(raw)
    if count:
        logger.info("Migrated %d legacy patient record(s) to treatments", count)
    return result, count


def parse_snapshot(data) -> SyncSnapshot:
    """Validate a snapshot received from the sync server, upgrading legacy patients.

    Raises pydantic's ValidationError (a ValueError) when the payload is not a snapshot.
    """
    if isinstance(data, dict) and isinstance(data.get("patients"), list):
        patients, _ = migrate_patients(data["patients"])
        data = {**data, "patients": patients}
    return SyncSnapshot.model_validate(data)
