"""Monthly payment report."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from clinic_sync.models import Patient


@dataclass
class PaymentEntry:
    patient_id: str
    patient_name: str
    treatment_description: str
    date: str
    amount: float
    description: str


def month_payments(patients: Iterable[Patient], year: int, month: int) -> list[PaymentEntry]:
    """Every payment dated within the given month, oldest first."""
    prefix = f"{year:04d}-{month:02d}-"
    entries = []
    for patient in patients:
        for treatment in patient.treatments:
            for payment in treatment.payments:
                if payment.date.startswith(prefix):
                    entries.append(PaymentEntry(
                        patient_id=patient.id,
                        patient_name=patient.name,
                        treatment_description=treatment.description,
                        date=payment.date,
                        amount=payment.amount,
                        description=payment.description,
                    ))
    return sorted(entries, key=lambda e: e.date)


def month_total(entries: Iterable[PaymentEntry]) -> Decimal:
    return sum((Decimal(str(e.amount)) for e in entries), Decimal("0.00")).quantize(Decimal("0.01"))


def treatment_total(patient: Patient, treatment_id: str) -> Decimal:
    """Sum paid so far on one treatment."""
    for treatment in patient.treatments:
        if treatment.id == treatment_id:
            return sum((Decimal(str(p.amount)) for p in treatment.payments), Decimal("0.00")).quantize(Decimal("0.01"))
    return Decimal("0.00")
