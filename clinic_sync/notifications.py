"""Birthday and recall outreach lists, with persisted "already notified" sets."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterable

from clinic_sync.local_storage.local_store import (
    BIRTHDAY_NOTIFIED_KEY,
    RECALL_NOTIFIED_KEY,
    LocalStore,
)
from clinic_sync.models import Appointment, Patient

logger = logging.getLogger(__name__)

RECALL_AFTER_MONTHS = 6

# Sort key for patients who never had an appointment; larger than any real gap
NO_APPOINTMENT_MONTHS = float("inf")


def period_key(day: date) -> str:
    """Year+month identifying the birthday dedup period."""
    return f"{day.year:04d}-{day.month:02d}"


class BirthdayNotifications:
    """Patients greeted this month. The set empties when the month changes."""

    def __init__(self, local_store: LocalStore, today: Callable[[], date] = date.today):
        self.local_store = local_store
        self.today = today

    def notified_ids(self) -> set[str]:
        saved = self.local_store.get_json(BIRTHDAY_NOTIFIED_KEY, None)
        if not isinstance(saved, dict):
            return set()
        if saved.get("month") != period_key(self.today()):
            return set()
        return set(saved.get("ids") or [])

    def mark_notified(self, patient_id: str) -> None:
        ids = self.notified_ids()
        ids.add(patient_id)
        self._save(ids)

    def clear(self) -> None:
        self.local_store.remove(BIRTHDAY_NOTIFIED_KEY)

    def _save(self, ids: set[str]) -> None:
        self.local_store.set_json(
            BIRTHDAY_NOTIFIED_KEY,
            {"month": period_key(self.today()), "ids": sorted(ids)},
        )


class RecallNotifications:
    """Patients sent a recall reminder. Never expires on its own; see clear()."""

    def __init__(self, local_store: LocalStore):
        self.local_store = local_store

    def notified_ids(self) -> set[str]:
        saved = self.local_store.get_json(RECALL_NOTIFIED_KEY, [])
        if not isinstance(saved, list):
            return set()
        return set(saved)

    def mark_notified(self, patient_id: str) -> None:
        ids = self.notified_ids()
        ids.add(patient_id)
        self.local_store.set_json(RECALL_NOTIFIED_KEY, sorted(ids))

    def clear(self) -> None:
        self.local_store.remove(RECALL_NOTIFIED_KEY)


@dataclass
class BirthdayCandidate:
    patient: Patient
    day: int


@dataclass
class RecallCandidate:
    patient: Patient
    last_appointment: Appointment | None = None
    last_visit: datetime | None = None
    months: int | None = None

    @property
    def sort_months(self) -> float:
        return NO_APPOINTMENT_MONTHS if self.months is None else self.months


def months_between(start: datetime, end: datetime) -> int:
    """Whole calendar months from start to end (negative if end is earlier)."""
    if end < start:
        return -months_between(end, start)
    months = (end.year - start.year) * 12 + (end.month - start.month)
    # The last month only counts once its day and time have been reached
    if (end.day, end.time()) < (start.day, start.time()):
        months -= 1
    return months


def _birth_month_day(birth_date: str | None) -> tuple[int, int] | None:
    if not birth_date:
        return None
    parts = birth_date.split("-")
    if len(parts) != 3:
        return None
    try:
        return int(parts[1]), int(parts[2])
    except ValueError:
        return None


def birthday_candidates(
    patients: Iterable[Patient],
    notified: set[str],
    today: date | None = None,
) -> list[BirthdayCandidate]:
    """Patients with a birthday this month not yet greeted, by day of month."""
    today = today or date.today()
    candidates = []
    for patient in patients:
        if patient.id in notified:
            continue
        month_day = _birth_month_day(patient.birth_date)
        if month_day and month_day[0] == today.month:
            candidates.append(BirthdayCandidate(patient=patient, day=month_day[1]))
    return sorted(candidates, key=lambda c: c.day)


def _appointment_datetime(appointment: Appointment) -> datetime | None:
    try:
        return datetime.fromisoformat(f"{appointment.date}T{appointment.time}")
    except ValueError:
        logger.warning("Ignoring appointment %s with invalid date/time", appointment.id)
        return None


def recall_candidates(
    patients: Iterable[Patient],
    last_appointment: Callable[[str], Appointment | None],
    notified: set[str],
    now: datetime | None = None,
) -> list[RecallCandidate]:
    """Patients overdue for a visit, longest gap first.

    A patient is due when their last appointment is at least six months
    old or they never had one.
    """
    now = now or datetime.now()
    candidates = []
    for patient in patients:
        if patient.id in notified:
            continue
        last = last_appointment(patient.id)
        if last is None:
            candidates.append(RecallCandidate(patient=patient))
            continue
        last_visit = _appointment_datetime(last)
        if last_visit is None:
            # Unknown gap; not the same as never having visited
            continue
        months = months_between(last_visit, now)
        if months >= RECALL_AFTER_MONTHS:
            candidates.append(RecallCandidate(
                patient=patient,
                last_appointment=last,
                last_visit=last_visit,
                months=months,
            ))
    return sorted(candidates, key=lambda c: c.sort_months, reverse=True)
