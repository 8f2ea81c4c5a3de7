"""Clinic records as stored on device and exchanged with the sync server.

Field names are snake_case in Python and camelCase on the wire, so
``Patient(birth_date=...)`` serializes as ``{"birthDate": ...}``.
"""

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now().isoformat()


def coerce_amount(value) -> float:
    """Convert free-form amount input to a non-negative value rounded to cents.

    Anything that is not a number becomes 0, as does a negative amount.
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        return 0.0
    if not amount.is_finite() or amount < 0:
        return 0.0
    return float(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class ClinicModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        """Serialize with wire field names, omitting unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Payment(ClinicModel):
    id: str = Field(default_factory=new_id)
    date: str
    amount: float = 0.0
    description: str = ""

    @field_validator("amount", mode="before")
    @classmethod
    def normalize_amount(cls, v):
        return coerce_amount(v)


class Treatment(ClinicModel):
    id: str = Field(default_factory=new_id)
    description: str = ""
    # Insertion order is display order
    payments: list[Payment] = Field(default_factory=list)
    created_at: str = Field(default_factory=now_iso)


class Patient(ClinicModel):
    id: str = Field(default_factory=new_id)
    name: str
    phone: str
    birth_date: str | None = None
    is_insurance: bool = False
    insurance_number: str | None = None
    treatments: list[Treatment] = Field(default_factory=list)
    created_at: str = Field(default_factory=now_iso)


class Appointment(ClinicModel):
    id: str = Field(default_factory=new_id)
    patient_id: str
    date: str  # YYYY-MM-DD
    time: str  # HH:mm
    created_at: str = Field(default_factory=now_iso)


DEFAULT_APPOINTMENT_REMINDER = (
    "Olá {nome}! 😊 Lembramos que sua consulta na Salles Ateliê Odontológico está "
    "marcada para o dia {data} às {horario}. Aguardamos você! 🦷"
)
DEFAULT_RECALL_REMINDER = (
    "Olá {nome}! 😊 Faz tempo que não nos visitamos! Que tal agendar uma avaliação "
    "e limpeza na Salles Ateliê Odontológico? Entre em contato conosco! 🦷✨"
)
DEFAULT_BIRTHDAY_GREETING = (
    "Olá {nome}! 🎉 A equipe da Salles Ateliê Odontológico deseja um feliz "
    "aniversário, com muita saúde e sorrisos! 🦷🎂"
)


class WhatsAppTemplate(ClinicModel):
    appointment_reminder: str = DEFAULT_APPOINTMENT_REMINDER
    recall_reminder: str = DEFAULT_RECALL_REMINDER
    birthday_greeting: str = DEFAULT_BIRTHDAY_GREETING


DEFAULT_CLINIC_NAME = "Minha Clínica"


class ClinicSettings(ClinicModel):
    clinic_name: str = DEFAULT_CLINIC_NAME
    dentist_name: str = ""


class SyncSnapshot(ClinicModel):
    """The full dataset exchanged with the sync server."""
    patients: list[Patient] = Field(default_factory=list)
    appointments: list[Appointment] = Field(default_factory=list)
    templates: WhatsAppTemplate = Field(default_factory=WhatsAppTemplate)
    settings: ClinicSettings = Field(default_factory=ClinicSettings)


BACKUP_VERSION = 1


class BackupDocument(ClinicModel):
    version: int
    exported_at: str = Field(default_factory=now_iso)
    patients: list[Patient]
    appointments: list[Appointment] = Field(default_factory=list)
    templates: WhatsAppTemplate = Field(default_factory=WhatsAppTemplate)
    settings: ClinicSettings | None = None
