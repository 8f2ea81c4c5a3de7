"""Console front end for the clinic records."""

import shlex
import sys
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from rich.console import Console
from rich.markdown import Markdown
from rich.status import Status

from clinic_sync import config
from clinic_sync.backup import BackupImportError, import_backup_file, write_backup
from clinic_sync.clinic_store import ClinicStore, normalize_patient_form
from clinic_sync.finance import month_payments, month_total
from clinic_sync.local_storage import LocalStore
from clinic_sync.log import configure_logging
from clinic_sync.messaging import patient_message
from clinic_sync.notifications import (
    BirthdayNotifications,
    RecallNotifications,
    birthday_candidates,
    recall_candidates,
)
from clinic_sync.sync_service import SyncService, SyncStatus

console = Console()


@dataclass
class ClinicApp:
    store: ClinicStore
    sync: SyncService
    birthdays: BirthdayNotifications
    recalls: RecallNotifications


def build_app(db_path=None, sync: SyncService | None = None) -> ClinicApp:
    local_store = LocalStore(db_path)
    sync = sync or SyncService()
    return ClinicApp(
        store=ClinicStore(local_store, sync),
        sync=sync,
        birthdays=BirthdayNotifications(local_store),
        recalls=RecallNotifications(local_store),
    )


HELP = """**Commands**

- `patients [search]` - list patients
- `add-patient <name> <phone> [birth YYYY-MM-DD] [insurance number]`
- `delete-patient <patient id>`
- `book <patient id> <YYYY-MM-DD> <HH:mm>` / `cancel <appointment id>`
- `agenda [YYYY-MM-DD]` / `week [YYYY-MM-DD]`
- `remind <appointment id>` - appointment reminder link
- `recall` / `recall-send <patient id>`
- `birthdays` / `greet <patient id>`
- `treatment <patient id> <description>`
- `pay <patient id> <treatment id> <amount> [YYYY-MM-DD] [description]`
- `finance [YYYY-MM]`
- `settings <clinic name> [dentist name]`
- `status` / `push` / `pull`
- `export [directory]` / `import <file>`
- `quit`
"""


def _parse_day(value: str | None) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date() if value else date.today()


def _patient_line(store: ClinicStore, patient) -> str:
    last = store.get_last_appointment(patient.id)
    insurance = f" - convênio {patient.insurance_number}" if patient.is_insurance else ""
    last_text = f", last visit {last.date}" if last else ""
    return f"- **{patient.name}** ({patient.phone}){insurance}{last_text} `{patient.id}`"


def _appointment_lines(store: ClinicStore, appointments) -> list[str]:
    lines = []
    for a in appointments:
        patient = store.get_patient_by_id(a.patient_id)
        name = patient.name if patient else "(unknown patient)"
        lines.append(f"- {a.date} {a.time} **{name}** `{a.id}`")
    return lines


def handle_help(app: ClinicApp, args: list[str]) -> str:
    return HELP


def handle_patients(app: ClinicApp, args: list[str]) -> str:
    patients = app.store.search_patients(" ".join(args))
    if not patients:
        return "No patients found."
    return "\n".join(_patient_line(app.store, p) for p in patients)


def handle_add_patient(app: ClinicApp, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: `add-patient <name> <phone> [birth YYYY-MM-DD] [insurance number]`"
    form = {
        "name": args[0],
        "phone": args[1],
        "birth_date": args[2] if len(args) > 2 else None,
        "is_insurance": len(args) > 3,
        "insurance_number": args[3] if len(args) > 3 else None,
    }
    patient = app.store.add_patient(normalize_patient_form(form))
    return f"Added **{patient.name}** `{patient.id}`"


def handle_delete_patient(app: ClinicApp, args: list[str]) -> str:
    if not args:
        return "Usage: `delete-patient <patient id>`"
    patient = app.store.get_patient_by_id(args[0])
    if not patient:
        return "Patient not found."
    app.store.delete_patient(patient.id)
    return f"Deleted **{patient.name}** and their appointments."


def handle_book(app: ClinicApp, args: list[str]) -> str:
    if len(args) < 3:
        return "Usage: `book <patient id> <YYYY-MM-DD> <HH:mm>`"
    patient = app.store.get_patient_by_id(args[0])
    if not patient:
        return "Patient not found."
    appointment = app.store.add_appointment({"patient_id": patient.id, "date": args[1], "time": args[2]})
    if not appointment:
        return f"The slot {args[1]} {args[2]} is already booked."
    return f"Booked **{patient.name}** on {appointment.date} at {appointment.time} `{appointment.id}`"


def handle_cancel(app: ClinicApp, args: list[str]) -> str:
    if not args:
        return "Usage: `cancel <appointment id>`"
    app.store.delete_appointment(args[0])
    return "Appointment cancelled."


def handle_agenda(app: ClinicApp, args: list[str]) -> str:
    day = _parse_day(args[0] if args else None)
    appointments = app.store.get_appointments_for_date(day.isoformat())
    if not appointments:
        return f"No appointments on {day.isoformat()}."
    return f"**Agenda {day.strftime('%d/%m/%Y')}**\n\n" + "\n".join(_appointment_lines(app.store, appointments))


def handle_week(app: ClinicApp, args: list[str]) -> str:
    day = _parse_day(args[0] if args else None)
    # Weeks start on Sunday
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    end = start + timedelta(days=6)
    appointments = app.store.get_appointments_for_date_range(start.isoformat(), end.isoformat())
    header = f"**Week {start.strftime('%d/%m')} - {end.strftime('%d/%m/%Y')}**"
    if not appointments:
        return f"{header}\n\nNo appointments."
    return f"{header}\n\n" + "\n".join(_appointment_lines(app.store, appointments))


def handle_remind(app: ClinicApp, args: list[str]) -> str:
    if not args:
        return "Usage: `remind <appointment id>`"
    appointment = next((a for a in app.store.appointments if a.id == args[0]), None)
    patient = app.store.get_patient_by_id(appointment.patient_id) if appointment else None
    if not patient:
        return "Appointment not found."
    message = patient_message(app.store.templates.appointment_reminder, patient, appointment)
    return f"{message.text}\n\n{message.url}"


def handle_recall(app: ClinicApp, args: list[str]) -> str:
    candidates = recall_candidates(
        app.store.patients, app.store.get_last_appointment, app.recalls.notified_ids()
    )
    if not candidates:
        return "No patients due for recall."
    lines = []
    for c in candidates:
        if c.last_visit:
            detail = f"last visit {c.last_visit.strftime('%d/%m/%Y')} ({c.months} months)"
        else:
            detail = "no appointment on record"
        lines.append(f"- **{c.patient.name}** - {detail} `{c.patient.id}`")
    return "**Patients more than 6 months without a visit**\n\n" + "\n".join(lines)


def handle_recall_send(app: ClinicApp, args: list[str]) -> str:
    if not args:
        return "Usage: `recall-send <patient id>`"
    patient = app.store.get_patient_by_id(args[0])
    if not patient:
        return "Patient not found."
    message = patient_message(app.store.templates.recall_reminder, patient)
    app.recalls.mark_notified(patient.id)
    return f"{message.text}\n\n{message.url}"


def handle_birthdays(app: ClinicApp, args: list[str]) -> str:
    today = date.today()
    candidates = birthday_candidates(app.store.patients, app.birthdays.notified_ids(), today)
    if not candidates:
        return "No birthdays left to greet this month."
    lines = [f"- {c.day:02d}/{today.month:02d} **{c.patient.name}** `{c.patient.id}`" for c in candidates]
    return "**Birthdays this month**\n\n" + "\n".join(lines)


def handle_greet(app: ClinicApp, args: list[str]) -> str:
    if not args:
        return "Usage: `greet <patient id>`"
    patient = app.store.get_patient_by_id(args[0])
    if not patient:
        return "Patient not found."
    message = patient_message(app.store.templates.birthday_greeting, patient)
    app.birthdays.mark_notified(patient.id)
    return f"{message.text}\n\n{message.url}"


def handle_treatment(app: ClinicApp, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: `treatment <patient id> <description>`"
    treatment = app.store.add_treatment(args[0], " ".join(args[1:]))
    if not treatment:
        return "Patient not found."
    return f"Added treatment **{treatment.description}** `{treatment.id}`"


def handle_pay(app: ClinicApp, args: list[str]) -> str:
    if len(args) < 3:
        return "Usage: `pay <patient id> <treatment id> <amount> [YYYY-MM-DD] [description]`"
    day = args[3] if len(args) > 3 else date.today().isoformat()
    description = " ".join(args[4:])
    payment = app.store.add_payment(args[0], args[1], day, args[2], description)
    if not payment:
        return "Treatment not found."
    return f"Recorded payment of R$ {payment.amount:.2f} on {payment.date}"


def handle_finance(app: ClinicApp, args: list[str]) -> str:
    month = datetime.strptime(args[0], "%Y-%m").date() if args else date.today()
    entries = month_payments(app.store.patients, month.year, month.month)
    total = month_total(entries)
    lines = [
        f"- {e.date} **{e.patient_name}** {e.treatment_description} - R$ {e.amount:.2f} {e.description}".rstrip()
        for e in entries
    ]
    header = f"**Payments {month.strftime('%m/%Y')}: R$ {total}**"
    return header + ("\n\n" + "\n".join(lines) if lines else "\n\nNo payments this month.")


def handle_settings(app: ClinicApp, args: list[str]) -> str:
    if not args:
        s = app.store.settings
        return f"Clinic: **{s.clinic_name}**\n\nDentist: **{s.dentist_name or '-'}**"
    app.store.update_settings({
        "clinic_name": args[0],
        "dentist_name": args[1] if len(args) > 1 else app.store.settings.dentist_name,
    })
    return "Settings saved."


def handle_status(app: ClinicApp, args: list[str]) -> str:
    pending = " (push pending)" if app.sync.has_pending_push else ""
    message = f": {app.sync.message}" if app.sync.message else ""
    return f"Sync {app.sync.status.value}{message}{pending}"


def handle_push(app: ClinicApp, args: list[str]) -> str:
    ok = app.store.force_push()
    return "Data sent to the server." if ok else "Push failed."


def handle_pull(app: ClinicApp, args: list[str]) -> str:
    ok = app.store.force_pull()
    if not ok:
        return "Pull failed, local data left unchanged."
    return f"Loaded {len(app.store.patients)} patients and {len(app.store.appointments)} appointments from the server."


def handle_export(app: ClinicApp, args: list[str]) -> str:
    path = write_backup(app.store, args[0] if args else ".")
    return f"Backup exported to `{path}`"


def handle_import(app: ClinicApp, args: list[str]) -> str:
    if not args:
        return "Usage: `import <file>`"
    try:
        document = import_backup_file(app.store, args[0])
    except BackupImportError as e:
        return f"Import failed: {e}"
    return f"Backup imported: {len(document.patients)} patients, {len(document.appointments)} appointments."


COMMAND_HANDLERS = {
    "help": handle_help,
    "patients": handle_patients,
    "add-patient": handle_add_patient,
    "delete-patient": handle_delete_patient,
    "book": handle_book,
    "cancel": handle_cancel,
    "agenda": handle_agenda,
    "week": handle_week,
    "remind": handle_remind,
    "recall": handle_recall,
    "recall-send": handle_recall_send,
    "birthdays": handle_birthdays,
    "greet": handle_greet,
    "treatment": handle_treatment,
    "pay": handle_pay,
    "finance": handle_finance,
    "settings": handle_settings,
    "status": handle_status,
    "push": handle_push,
    "pull": handle_pull,
    "export": handle_export,
    "import": handle_import,
}


def process_input(app: ClinicApp, user_input: str) -> str:
    """Run one command line and return the response as markdown."""
    parts = shlex.split(user_input)
    if not parts:
        return ""
    handler = COMMAND_HANDLERS.get(parts[0].lower())
    if handler:
        return handler(app, parts[1:])
    return f"Unknown command `{parts[0]}`. Type `help` for the list."


STATUS_STYLES = {
    SyncStatus.SYNCING: "yellow",
    SyncStatus.SUCCESS: "green",
    SyncStatus.ERROR: "red",
    SyncStatus.IDLE: "dim",
}


def print_sync_status(status: SyncStatus, message: str | None = None) -> None:
    style = STATUS_STYLES[status]
    console.print(f"[{style}]sync {status.value}[/{style}]" + (f" {message}" if message else ""))


def main():
    """Main command loop."""
    configure_logging(config.LOG_LEVEL, console)
    app = build_app()
    unsubscribe = app.sync.on_status_change(print_sync_status)

    console.print(f"[bold blue]{app.store.settings.clinic_name}[/bold blue]")
    console.print("Type 'help' for commands, 'quit' or 'exit' to leave.\n")

    is_tty = sys.stdin.isatty()

    try:
        while True:
            try:
                user_input = console.input("[bold green]>[/bold green] ").strip()
                # Echo input when stdin is piped (not interactive)
                if not is_tty and user_input:
                    console.print(f"[dim]{user_input}[/dim]")
            except (EOFError, KeyboardInterrupt):
                console.print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("quit", "exit"):
                break

            try:
                with Status("Working...", console=console, spinner="dots"):
                    response = process_input(app, user_input)
                console.print(Markdown(response), "\n")
            except Exception as e:
                console.print(f"[bold red]Error:[/bold red] {e}\n")
    finally:
        unsubscribe()
        if app.sync.has_pending_push:
            console.print("[dim]Sending pending changes...[/dim]")
            app.sync.flush()
        app.sync.dispose()
        console.print("[bold blue]Goodbye![/bold blue]")


if __name__ == "__main__":
    main()
