"""In-memory clinic state mirrored to the local store and pushed to the sync server."""

import logging
from enum import Enum

from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from clinic_sync import config
from clinic_sync.local_storage.local_store import (
    APPOINTMENTS_KEY,
    PATIENTS_KEY,
    SETTINGS_KEY,
    TEMPLATES_KEY,
    LocalStore,
)
from clinic_sync.migrations import migrate_patients
from clinic_sync.models import (
    DEFAULT_CLINIC_NAME,
    Appointment,
    ClinicSettings,
    Patient,
    Payment,
    SyncSnapshot,
    Treatment,
    WhatsAppTemplate,
    coerce_amount,
)
from clinic_sync.sync_service import SyncService

logger = logging.getLogger(__name__)


class BookingPolicy(Enum):
    """What add_appointment does when the (date, time) slot is already taken."""
    ALLOW = "allow"
    REJECT = "reject"


# Assigned by the factory operations, never by callers
IMMUTABLE_FIELDS = {"id", "created_at"}


def _to_field_names(model_cls: type[BaseModel], data: dict) -> dict:
    """Map wire (camelCase) or Python keys onto model field names, dropping unknown keys."""
    by_alias = {to_camel(name): name for name in model_cls.model_fields}
    result = {}
    for key, value in data.items():
        if key in model_cls.model_fields:
            result[key] = value
        elif key in by_alias:
            result[by_alias[key]] = value
    return result


def normalize_patient_form(data: dict) -> dict:
    """Clean patient form input before it reaches the store.

    Raises ValueError when name or phone is blank.
    """
    cleaned = _to_field_names(Patient, data)
    name = (cleaned.get("name") or "").strip()
    phone = (cleaned.get("phone") or "").strip()
    if not name or not phone:
        raise ValueError("Name and phone are required")
    cleaned["name"] = name
    cleaned["phone"] = phone

    cleaned["is_insurance"] = bool(cleaned.get("is_insurance"))
    number = (cleaned.get("insurance_number") or "").strip()
    cleaned["insurance_number"] = number if cleaned["is_insurance"] and number else None
    cleaned["birth_date"] = cleaned.get("birth_date") or None
    return cleaned


class ClinicStore:
    """Single source of truth for patients, appointments, templates and settings.

    Every mutation writes the affected collection to the local store right
    away and schedules a debounced push of the whole snapshot.
    """

    def __init__(
        self,
        local_store: LocalStore,
        sync: SyncService | None = None,
        booking_policy: BookingPolicy | str | None = None,
    ):
        self.local_store = local_store
        self.sync = sync
        self.booking_policy = BookingPolicy(booking_policy or config.BOOKING_POLICY)

        self.patients: list[Patient] = []
        self.appointments: list[Appointment] = []
        self.templates = WhatsAppTemplate()
        self.settings = ClinicSettings()
        self.load()

    def load(self) -> None:
        """(Re)seed in-memory state from the local store."""
        self.patients = self._load_patients()
        self.appointments = self._load_records(APPOINTMENTS_KEY, Appointment)
        self.templates = self._load_record(TEMPLATES_KEY, WhatsAppTemplate)
        self.settings = self._load_record(SETTINGS_KEY, ClinicSettings)

    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            patients=list(self.patients),
            appointments=list(self.appointments),
            templates=self.templates,
            settings=self.settings,
        )

    # Patients

    def add_patient(self, data: dict) -> Patient:
        """Create a patient with a fresh id and timestamp. Duplicates are allowed."""
        fields = {k: v for k, v in _to_field_names(Patient, data).items() if k not in IMMUTABLE_FIELDS}
        patient = Patient(**fields)
        self.patients.append(patient)
        self._persist_patients()
        self._schedule_push()
        return patient

    def update_patient(self, patient_id: str, updates: dict) -> Patient | None:
        """Merge the given fields into a patient. Returns None if it does not exist."""
        for index, patient in enumerate(self.patients):
            if patient.id == patient_id:
                break
        else:
            return None

        changes = {k: v for k, v in _to_field_names(Patient, updates).items() if k not in IMMUTABLE_FIELDS}
        data = {**patient.model_dump(), **changes}
        if not data.get("is_insurance"):
            data["insurance_number"] = None
        merged = Patient.model_validate(data)
        self.patients[index] = merged
        self._persist_patients()
        self._schedule_push()
        return merged

    def delete_patient(self, patient_id: str) -> None:
        """Remove a patient together with all of their appointments."""
        self.patients = [p for p in self.patients if p.id != patient_id]
        self.appointments = [a for a in self.appointments if a.patient_id != patient_id]
        self._persist_patients()
        self._persist_appointments()
        self._schedule_push()

    def get_patient_by_id(self, patient_id: str) -> Patient | None:
        for patient in self.patients:
            if patient.id == patient_id:
                return patient
        return None

    def search_patients(self, query: str, limit: int | None = None) -> list[Patient]:
        """Patients whose name (case-insensitive) or phone contains the query."""
        q = query.strip().lower()
        if not q:
            matches = list(self.patients)
        else:
            matches = [p for p in self.patients if q in p.name.lower() or q in p.phone]
        return matches[:limit] if limit else matches

    # Treatments and payments

    def add_treatment(self, patient_id: str, description: str) -> Treatment | None:
        patient = self.get_patient_by_id(patient_id)
        if not patient:
            return None
        treatment = Treatment(description=description.strip())
        patient.treatments.append(treatment)
        self._persist_patients()
        self._schedule_push()
        return treatment

    def update_treatment(self, patient_id: str, treatment_id: str, updates: dict) -> Treatment | None:
        patient, treatment = self._find_treatment(patient_id, treatment_id)
        if not treatment:
            return None
        changes = {k: v for k, v in _to_field_names(Treatment, updates).items() if k not in IMMUTABLE_FIELDS}
        merged = Treatment.model_validate({**treatment.model_dump(), **changes})
        index = patient.treatments.index(treatment)
        patient.treatments[index] = merged
        self._persist_patients()
        self._schedule_push()
        return merged

    def delete_treatment(self, patient_id: str, treatment_id: str) -> None:
        patient = self.get_patient_by_id(patient_id)
        if not patient:
            return
        patient.treatments = [t for t in patient.treatments if t.id != treatment_id]
        self._persist_patients()
        self._schedule_push()

    def add_payment(
        self,
        patient_id: str,
        treatment_id: str,
        date: str,
        amount,
        description: str = "",
    ) -> Payment | None:
        """Append a payment to a treatment. Invalid or negative amounts become 0."""
        _, treatment = self._find_treatment(patient_id, treatment_id)
        if not treatment:
            return None
        payment = Payment(date=date, amount=coerce_amount(amount), description=description.strip())
        treatment.payments.append(payment)
        self._persist_patients()
        self._schedule_push()
        return payment

    def delete_payment(self, patient_id: str, treatment_id: str, payment_id: str) -> None:
        _, treatment = self._find_treatment(patient_id, treatment_id)
        if not treatment:
            return
        treatment.payments = [p for p in treatment.payments if p.id != payment_id]
        self._persist_patients()
        self._schedule_push()

    # Appointments

    def add_appointment(self, data: dict) -> Appointment | None:
        """Book an appointment.

        Under BookingPolicy.REJECT an occupied (date, time) slot is refused
        and None is returned; otherwise double-booking is kept as-is.
        """
        fields = {k: v for k, v in _to_field_names(Appointment, data).items() if k not in IMMUTABLE_FIELDS}
        appointment = Appointment(**fields)

        if self.booking_policy is BookingPolicy.REJECT and self.is_slot_taken(appointment.date, appointment.time):
            logger.info("Rejected booking for occupied slot %s %s", appointment.date, appointment.time)
            return None

        self.appointments.append(appointment)
        self._persist_appointments()
        self._schedule_push()
        return appointment

    def delete_appointment(self, appointment_id: str) -> None:
        self.appointments = [a for a in self.appointments if a.id != appointment_id]
        self._persist_appointments()
        self._schedule_push()

    def is_slot_taken(self, date: str, time: str) -> bool:
        return any(a.date == date and a.time == time for a in self.appointments)

    def get_appointments_for_date(self, date: str) -> list[Appointment]:
        """Appointments on a date, earliest time first."""
        return sorted((a for a in self.appointments if a.date == date), key=lambda a: a.time)

    def get_appointments_for_date_range(self, start: str, end: str) -> list[Appointment]:
        """Appointments with start <= date <= end, ordered by (date, time)."""
        return sorted(
            (a for a in self.appointments if start <= a.date <= end),
            key=lambda a: (a.date, a.time),
        )

    def get_last_appointment(self, patient_id: str) -> Appointment | None:
        """The patient's most recent appointment by (date, time)."""
        own = [a for a in self.appointments if a.patient_id == patient_id]
        if not own:
            return None
        return max(own, key=lambda a: (a.date, a.time))

    # Templates and settings

    def update_templates(self, templates: WhatsAppTemplate | dict) -> None:
        if not isinstance(templates, WhatsAppTemplate):
            templates = WhatsAppTemplate.model_validate(templates)
        self.templates = templates
        self.local_store.set_json(TEMPLATES_KEY, self.templates.to_json())
        self._schedule_push()

    def update_settings(self, settings: ClinicSettings | dict) -> None:
        if isinstance(settings, ClinicSettings):
            settings = settings.model_dump()
        fields = _to_field_names(ClinicSettings, settings)
        self.settings = ClinicSettings(
            clinic_name=(fields.get("clinic_name") or "").strip() or DEFAULT_CLINIC_NAME,
            dentist_name=(fields.get("dentist_name") or "").strip(),
        )
        self.local_store.set_json(SETTINGS_KEY, self.settings.to_json())
        self._schedule_push()

    # Sync

    def replace_all(self, snapshot: SyncSnapshot) -> None:
        """Overwrite memory and local store with a snapshot. Last write wins, no merge."""
        self.patients = list(snapshot.patients)
        self.appointments = list(snapshot.appointments)
        self.templates = snapshot.templates
        self.settings = snapshot.settings
        self._persist_patients()
        self._persist_appointments()
        self.local_store.set_json(TEMPLATES_KEY, self.templates.to_json())
        self.local_store.set_json(SETTINGS_KEY, self.settings.to_json())

    def force_pull(self) -> bool:
        """Replace local state with the server copy. Local state is untouched on failure."""
        if not self.sync:
            return False
        snapshot = self.sync.pull()
        if snapshot is None:
            return False
        self.replace_all(snapshot)
        return True

    def force_push(self) -> bool:
        """Push the current snapshot now, skipping the debounce."""
        if not self.sync:
            return False
        return self.sync.push_now(self.snapshot())

    # Private helpers

    def _schedule_push(self) -> None:
        if self.sync:
            self.sync.schedule_push(self.snapshot())

    def _persist_patients(self) -> None:
        self.local_store.set_json(PATIENTS_KEY, [p.to_json() for p in self.patients])

    def _persist_appointments(self) -> None:
        self.local_store.set_json(APPOINTMENTS_KEY, [a.to_json() for a in self.appointments])

    def _find_treatment(self, patient_id: str, treatment_id: str) -> tuple[Patient | None, Treatment | None]:
        patient = self.get_patient_by_id(patient_id)
        if not patient:
            return None, None
        for treatment in patient.treatments:
            if treatment.id == treatment_id:
                return patient, treatment
        return patient, None

    def _load_patients(self) -> list[Patient]:
        raw = self.local_store.get_json(PATIENTS_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Stored patients are not a list, starting empty")
            return []
        raw, migrated = migrate_patients(raw)
        patients = self._validate_records(raw, Patient, PATIENTS_KEY)
        if migrated:
            self.local_store.set_json(PATIENTS_KEY, [p.to_json() for p in patients])
        return patients

    def _load_records(self, key: str, model_cls):
        raw = self.local_store.get_json(key, [])
        if not isinstance(raw, list):
            logger.warning("Stored %s is not a list, starting empty", key)
            return []
        return self._validate_records(raw, model_cls, key)

    def _validate_records(self, raw: list, model_cls, key: str) -> list:
        records = []
        for item in raw:
            try:
                records.append(model_cls.model_validate(item))
            except ValidationError as e:
                logger.warning("Dropping invalid record from %s: %s", key, e)
        return records

    def _load_record(self, key: str, model_cls):
        raw = self.local_store.get_json(key, None)
        if raw is None:
            return model_cls()
        try:
            return model_cls.model_validate(raw)
        except ValidationError as e:
            logger.warning("Using defaults for %s: %s", key, e)
            return model_cls()
