"""
Appointment API endpoints
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from agenda.api.deps import get_db, get_current_user
from agenda.config import get_settings
from agenda.infrastructure.db.models import User
from agenda.application.appointments import (
    CreateAppointmentUseCase, UpdateAppointmentUseCase, list_appointments,
)
from agenda.application.conflicts import ConflictCandidate, detect_conflicts
from agenda.application.status_sweeper import sweep_past_appointments


router = APIRouter(prefix="/api/v1/appointments", tags=["appointments"])


# === Request/Response models ===

class AppointmentPayload(BaseModel):
    """Loose payload; ``rule_id`` is accepted as a legacy alias of recurring_rule_id"""
    model_config = ConfigDict(extra="allow")

    occurrence_date: date | None = None
    time_local: str | None = None
    timezone: str | None = None
    duration_minutes: int | None = None
    client_id: int | None = None
    client_name: str | None = None
    service: str | None = None
    amount: str | None = None
    payment_method: str | None = None
    notes: str | None = None
    status: str | None = None
    recurring_rule_id: int | None = None


class AppointmentResponse(BaseModel):
    id: int
    occurrence_date: date
    time_local: str
    timezone: str
    start_at: datetime
    end_at: datetime | None
    client_id: int | None
    client_name: str | None
    service: str | None
    amount: str | None
    status: str
    effective_status: str
    recurring_rule_id: int | None


class ConflictResponse(BaseModel):
    id: int
    client_name: str
    occurrence_date: date
    time_local: str
    start_at: datetime
    end_at: datetime


def _payload(req: AppointmentPayload) -> dict:
    data = req.model_dump(exclude_unset=True)
    data.update(req.model_extra or {})
    return data


def _amount(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


# === Endpoints ===

@router.post("/")
def create_appointment(req: AppointmentPayload, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    appointment_id = CreateAppointmentUseCase(db).execute(user.id, _payload(req))
    return {"id": appointment_id}


@router.patch("/{appointment_id}")
def update_appointment(
    appointment_id: int,
    req: AppointmentPayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    UpdateAppointmentUseCase(db).execute(user.id, appointment_id, _payload(req))
    return {"id": appointment_id}


@router.get("/", response_model=List[AppointmentResponse])
def get_appointments(
    date_from: date | None = None,
    date_to: date | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    out = []
    for item in list_appointments(db, user.id, date_from, date_to):
        a = item["appointment"]
        out.append(AppointmentResponse(
            id=a.id,
            occurrence_date=a.occurrence_date,
            time_local=a.time_local.strftime("%H:%M"),
            timezone=a.timezone,
            start_at=a.start_at,
            end_at=a.end_at,
            client_id=a.client_id,
            client_name=a.client_name,
            service=a.service,
            amount=_amount(a.amount),
            status=a.status,
            effective_status=item["effective_status"],
            recurring_rule_id=a.recurring_rule_id,
        ))
    return out


@router.get("/conflicts", response_model=List[ConflictResponse])
def get_conflicts(
    occurrence_date: date,
    time_local: str,
    timezone: str | None = None,
    exclude_id: int | None = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """All appointments overlapping a slot of the configured duration at the given local date/time"""
    candidate = ConflictCandidate(
        occurrence_date=occurrence_date,
        time_local=time_local,
        timezone=timezone or get_settings().TIMEZONE,
    )
    return [
        ConflictResponse(
            id=c.id,
            client_name=c.client_name,
            occurrence_date=c.occurrence_date,
            time_local=c.time_local.strftime("%H:%M"),
            start_at=c.start_at,
            end_at=c.end_at,
        )
        for c in detect_conflicts(db, candidate, user.id, exclude_id=exclude_id)
    ]


@router.post("/sweep")
def sweep(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Persist "completed" for every scheduled appointment that already ended"""
    return {"updated": sweep_past_appointments(db).updated}
