"""Backup export and import."""

import json
import logging
from datetime import date
from pathlib import Path

from pydantic import ValidationError

from clinic_sync.clinic_store import ClinicStore
from clinic_sync.local_storage.local_store import (
    APPOINTMENTS_KEY,
    PATIENTS_KEY,
    SETTINGS_KEY,
    TEMPLATES_KEY,
)
from clinic_sync.migrations import migrate_patients
from clinic_sync.models import BACKUP_VERSION, BackupDocument

logger = logging.getLogger(__name__)


class BackupImportError(Exception):
    """Raised when a backup file cannot be imported."""
    pass


def backup_filename(day: date | None = None) -> str:
    return f"backup-clinica-{(day or date.today()).isoformat()}.json"


def export_backup(store: ClinicStore) -> dict:
    """Build the backup document for everything the store holds."""
    document = BackupDocument(
        version=BACKUP_VERSION,
        patients=store.patients,
        appointments=store.appointments,
        templates=store.templates,
        settings=store.settings,
    )
    return document.to_json()


def write_backup(store: ClinicStore, directory: Path | str = ".") -> Path:
    """Write the backup document as pretty JSON and return its path."""
    path = Path(directory) / backup_filename()
    path.write_text(json.dumps(export_backup(store), indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Backup written to %s", path)
    return path


def read_backup(path: Path | str) -> dict:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BackupImportError(f"Could not read backup file: {e}")


def import_backup(store: ClinicStore, data) -> BackupDocument:
    """Replace all local data with a backup document.

    Nothing is written unless the whole document validates.
    """
    if not isinstance(data, dict) or not data.get("version") or "patients" not in data:
        raise BackupImportError("Invalid backup file")
    if not isinstance(data["patients"], list):
        raise BackupImportError("Invalid backup file")

    patients, _ = migrate_patients(data["patients"])
    try:
        document = BackupDocument.model_validate({
            **data,
            "patients": patients,
            "appointments": data.get("appointments") or [],
            "templates": data.get("templates") or {},
        })
    except ValidationError as e:
        raise BackupImportError(f"Invalid backup file: {e.error_count()} invalid field(s)")

    local = store.local_store
    local.set_json(PATIENTS_KEY, [p.to_json() for p in document.patients])
    local.set_json(APPOINTMENTS_KEY, [a.to_json() for a in document.appointments])
    local.set_json(TEMPLATES_KEY, document.templates.to_json())
    if document.settings is not None:
        local.set_json(SETTINGS_KEY, document.settings.to_json())
    store.load()
    logger.info(
        "Imported backup: %d patients, %d appointments",
        len(document.patients), len(document.appointments),
    )
    return document


def import_backup_file(store: ClinicStore, path: Path | str) -> BackupDocument:
    return import_backup(store, read_backup(path))
