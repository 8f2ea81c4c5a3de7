"""WhatsApp message text and deep links."""

import re
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote

from clinic_sync import config
from clinic_sync.models import Appointment, Patient

WHATSAPP_URL = "https://wa.me"

# Numbers with more digits than this already carry a country code
LOCAL_NUMBER_MAX_DIGITS = 11


@dataclass
class OutboundMessage:
    text: str
    phone: str
    url: str


def clean_phone(phone: str) -> str:
    """Strip everything but digits."""
    return re.sub(r"\D", "", phone or "")


def full_phone(phone: str, country_code: str | None = None) -> str:
    """Digits of the phone, prefixed with the country code for local numbers."""
    digits = clean_phone(phone)
    if len(digits) <= LOCAL_NUMBER_MAX_DIGITS:
        return f"{country_code or config.COUNTRY_CODE}{digits}"
    return digits


def apply_replacements(template: str, replacements: dict[str, str]) -> str:
    """Replace every ``{key}`` token. Unknown tokens are left in place."""
    result = template
    for key, value in replacements.items():
        result = result.replace(f"{{{key}}}", str(value))
    return result


def whatsapp_link(phone: str, message: str, country_code: str | None = None) -> str:
    # Same escaping as JavaScript's encodeURIComponent
    encoded = quote(message, safe="-_.!~*'()")
    return f"{WHATSAPP_URL}/{full_phone(phone, country_code)}?text={encoded}"


def build_message(
    template: str,
    patient_name: str,
    phone: str,
    replacements: dict[str, str] | None = None,
    country_code: str | None = None,
) -> OutboundMessage:
    """Fill a template for a patient and build its wa.me link.

    ``{nome}`` is always the patient name unless replacements override it.
    """
    text = apply_replacements(template, {"nome": patient_name, **(replacements or {})})
    return OutboundMessage(
        text=text,
        phone=full_phone(phone, country_code),
        url=whatsapp_link(phone, text, country_code),
    )


def appointment_replacements(appointment: Appointment) -> dict[str, str]:
    """Tokens for the appointment reminder: date as dd/MM/yyyy and time."""
    try:
        day = datetime.strptime(appointment.date, "%Y-%m-%d").strftime("%d/%m/%Y")
    except ValueError:
        day = appointment.date
    return {"data": day, "horario": appointment.time}


def patient_message(template: str, patient: Patient, appointment: Appointment | None = None) -> OutboundMessage:
    replacements = appointment_replacements(appointment) if appointment else {}
    return build_message(template, patient.name, patient.phone, replacements)
