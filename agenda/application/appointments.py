"""Appointment use cases (create / update / list with effective status)"""
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agenda.config import Settings, get_settings
from agenda.errors import AuthorizationError, ValidationError
from agenda.domain.appointment import (
    Appointment, VALID_STATUSES, STATUS_SCHEDULED, effective_status,
    sanitize_appointment_create, sanitize_appointment_update,
)
from agenda.domain.timezones import (
    to_absolute_instant, parse_local_date, parse_local_time, get_zone, as_utc, utcnow,
)
from agenda.infrastructure.db.repository import SchedulingRepository

_PLAIN_FIELDS = ("client_name", "service", "payment_method", "notes")


def _parse_amount(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value).replace(",", "."))
    except InvalidOperation:
        raise ValidationError(f"invalid amount: {value}", "amount")
    if amount < 0:
        raise ValidationError("amount must be >= 0", "amount")
    return amount


def _parse_duration(value) -> timedelta | None:
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValidationError("duration_minutes must be a positive integer", "duration_minutes")
    return timedelta(minutes=value)


class CreateAppointmentUseCase:
    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.repo = SchedulingRepository(db)
        self.settings = settings or get_settings()

    def execute(self, account_id: int, payload: Dict[str, Any]) -> int:
        data = sanitize_appointment_create(payload)

        tz = data.get("timezone") or self.settings.TIMEZONE
        get_zone(tz)
        if not data.get("occurrence_date"):
            raise ValidationError("occurrence_date is required", "occurrence_date")
        if not data.get("time_local"):
            raise ValidationError("time_local is required", "time_local")
        occurrence_date = parse_local_date(data["occurrence_date"], "occurrence_date")
        time_local = parse_local_time(data["time_local"], "time_local")

        status = data.get("status") or STATUS_SCHEDULED
        if status not in VALID_STATUSES:
            raise ValidationError(f"invalid status: {status}", "status")

        rule_id = data.get("recurring_rule_id")
        if rule_id is not None and self.repo.get_rule(account_id, rule_id) is None:
            raise AuthorizationError(f"Rule #{rule_id} not found")

        client_id = data.get("client_id")
        client_name = data.get("client_name")
        if client_id is not None:
            client = self.repo.get_client(account_id, client_id)
            if client is None:
                raise AuthorizationError(f"Client #{client_id} not found")
            client_name = client_name or client.name

        duration = _parse_duration(data.get("duration_minutes")) or timedelta(
            minutes=self.settings.APPOINTMENT_DURATION_MINUTES
        )
        start_at = to_absolute_instant(occurrence_date, time_local, tz)

        values = {
            "account_id": account_id,
            "recurring_rule_id": rule_id,
            "occurrence_date": occurrence_date,
            "time_local": time_local,
            "timezone": tz,
            "start_at": start_at,
            "end_at": start_at + duration,
            "client_id": client_id,
            "client_name": client_name,
            "service": data.get("service"),
            "amount": _parse_amount(data.get("amount")),
            "payment_method": data.get("payment_method"),
            "notes": data.get("notes"),
            "status": status,
        }
        try:
            row = self.repo.add_appointment(values)
        except IntegrityError:
            self.db.rollback()
            raise ValidationError(
                f"Rule #{rule_id} already has an appointment on {occurrence_date.isoformat()}",
                "occurrence_date",
            )
        self.db.commit()
        return row.id


class UpdateAppointmentUseCase:
    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.repo = SchedulingRepository(db)
        self.settings = settings or get_settings()

    def execute(self, account_id: int, appointment_id: int, payload: Dict[str, Any]) -> None:
        row = self.repo.get_appointment(account_id, appointment_id)
        if row is None:
            raise AuthorizationError(f"Appointment #{appointment_id} not found")

        data = sanitize_appointment_update(payload)
        fields: Dict[str, Any] = {}

        if "recurring_rule_id" in data:
            rule_id = data["recurring_rule_id"]
            if rule_id is not None and self.repo.get_rule(account_id, rule_id) is None:
                raise AuthorizationError(f"Rule #{rule_id} not found")
            fields["recurring_rule_id"] = rule_id

        if "status" in data:
            if data["status"] not in VALID_STATUSES:
                raise ValidationError(f"invalid status: {data['status']}", "status")
            fields["status"] = data["status"]

        if "amount" in data:
            fields["amount"] = _parse_amount(data["amount"])

        for key in _PLAIN_FIELDS:
            if key in data:
                fields[key] = data[key]

        if any(k in data for k in ("occurrence_date", "time_local", "timezone", "duration_minutes")):
            tz = data.get("timezone") or row.timezone
            get_zone(tz)
            occurrence_date = parse_local_date(data.get("occurrence_date") or row.occurrence_date, "occurrence_date")
            # (recurring_rule_id, occurrence_date) identifies a rule occurrence
            if row.recurring_rule_id is not None and occurrence_date != row.occurrence_date:
                raise ValidationError(
                    "occurrence_date of a recurring rule occurrence cannot change; "
                    "change time_local or cancel it instead",
                    "occurrence_date",
                )
            time_local = parse_local_time(data.get("time_local") or row.time_local, "time_local")
            old_start = as_utc(row.start_at)
            duration = _parse_duration(data.get("duration_minutes"))
            if duration is None and row.end_at is not None:
                duration = as_utc(row.end_at) - old_start
            if duration is None:
                duration = timedelta(minutes=self.settings.APPOINTMENT_DURATION_MINUTES)
            start_at = to_absolute_instant(occurrence_date, time_local, tz)
            fields.update({
                "occurrence_date": occurrence_date,
                "time_local": time_local,
                "timezone": tz,
                "start_at": start_at,
                "end_at": start_at + duration,
            })

        if not fields:
            return
        try:
            self.repo.update_appointment(row, fields)
        except IntegrityError:
            self.db.rollback()
            raise ValidationError("Another appointment of this rule already uses that date", "occurrence_date")
        self.db.commit()


def list_appointments(
    db: Session,
    account_id: int,
    date_from: date | None = None,
    date_to: date | None = None,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> List[Dict[str, Any]]:
    """Appointments ordered by start, each with its effective status."""
    settings = settings or get_settings()
    duration = timedelta(minutes=settings.APPOINTMENT_DURATION_MINUTES)
    now = now or utcnow()
    out = []
    for row in SchedulingRepository(db).list_appointments(account_id, date_from, date_to):
        appointment = Appointment.from_row(row)
        out.append({
            "appointment": appointment,
            "effective_status": effective_status(appointment, now, duration),
        })
    return out
