"""FinancialEntry domain constants and helpers"""
from datetime import time
from decimal import Decimal

STATUS_EXPECTED = "expected"
STATUS_REALIZED = "realized"
STATUS_CANCELLED = "cancelled"

KIND_INCOME = "INCOME"
KIND_EXPENSE = "EXPENSE"

APPOINTMENT_NOTE_PREFIX = "Appointment: "


def appointment_entry_note(client_name: str | None, time_local: time) -> str:
    """Note of an expected entry projected from an appointment.

    (note, due_date, kind) is the dedup key, so the time of day is part of it:
    two sessions of the same client on one day stay distinct.
    """
    who = (client_name or "").strip() or "client"
    return f"{APPOINTMENT_NOTE_PREFIX}{who} {time_local.strftime('%H:%M')}"


def is_missing_amount(amount: Decimal | None) -> bool:
    return amount is None or Decimal(amount) == 0
