"""
Appointment domain helpers: statuses, effective status, payload sanitization.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict

from agenda.domain.timezones import as_utc

STATUS_SCHEDULED = "scheduled"
STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_NO_SHOW = "no_show"
STATUS_CANCELLED = "cancelled"

VALID_STATUSES = frozenset({
    STATUS_SCHEDULED, STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_NO_SHOW, STATUS_CANCELLED,
})

# Statuses that never receive an expected financial projection
NON_BILLABLE_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW})

DEFAULT_DURATION = timedelta(minutes=60)

# Legacy payload key that means the same as recurring_rule_id
LEGACY_RULE_KEY = "rule_id"
RULE_KEY = "recurring_rule_id"


@dataclass(frozen=True)
class Appointment:
    id: int | None
    account_id: int
    start_at: datetime
    occurrence_date: date
    time_local: time
    timezone: str
    status: str = STATUS_SCHEDULED
    end_at: datetime | None = None
    recurring_rule_id: int | None = None
    client_id: int | None = None
    client_name: str | None = None
    service: str | None = None
    amount: Decimal | None = None
    payment_method: str | None = None
    notes: str | None = None

    @classmethod
    def from_row(cls, row) -> "Appointment":
        return cls(
            id=row.id,
            account_id=row.account_id,
            start_at=as_utc(row.start_at),
            end_at=as_utc(row.end_at) if row.end_at is not None else None,
            occurrence_date=row.occurrence_date,
            time_local=row.time_local,
            timezone=row.timezone,
            status=row.status,
            recurring_rule_id=row.recurring_rule_id,
            client_id=row.client_id,
            client_name=row.client_name,
            service=row.service,
            amount=row.amount,
            payment_method=row.payment_method,
            notes=row.notes,
        )


def effective_end(start_at: datetime, end_at: datetime | None, duration: timedelta = DEFAULT_DURATION) -> datetime:
    """Stored end if present, else start + default duration."""
    if end_at is not None:
        return as_utc(end_at)
    return as_utc(start_at) + duration


def effective_status(appointment, now: datetime, duration: timedelta = DEFAULT_DURATION) -> str:
    """
    Status a reader should see right now.

    A "scheduled" appointment whose end has passed is reported as
    "completed" even before the sweeper persists it. ``duration`` applies
    when the appointment has no stored end.
    """
    status = appointment.status or STATUS_SCHEDULED
    if status != STATUS_SCHEDULED:
        return status
    if effective_end(appointment.start_at, appointment.end_at, duration) <= as_utc(now):
        return STATUS_COMPLETED
    return status


def _merge_rule_alias(payload: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in payload.items() if k != LEGACY_RULE_KEY}
    legacy = payload.get(LEGACY_RULE_KEY)
    out[RULE_KEY] = legacy if legacy is not None else payload.get(RULE_KEY)
    return out


def sanitize_appointment_create(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Only recurring_rule_id reaches the database.

    The legacy ``rule_id`` key wins when both are present and is dropped;
    the result always carries ``recurring_rule_id`` (None for one-offs).
    """
    return _merge_rule_alias(payload)


def sanitize_appointment_update(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Same merge as on create, but a partial update that mentions neither key
    leaves the stored link alone.
    """
    if LEGACY_RULE_KEY not in payload and RULE_KEY not in payload:
        return dict(payload)
    return _merge_rule_alias(payload)
