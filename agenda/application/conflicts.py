"""
Appointment time-conflict detection.

The candidate occupies [start, start + duration) with the configured duration;
existing appointments occupy [start_at, end_at) with end_at falling back to
start_at + duration. Half-open intervals overlap when
``start_a < end_b and start_b < end_a``.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List

from sqlalchemy.orm import Session

from agenda.config import Settings, get_settings
from agenda.domain.appointment import DEFAULT_DURATION, effective_end
from agenda.domain.timezones import to_absolute_instant, as_utc
from agenda.infrastructure.db.repository import SchedulingRepository

UNKNOWN_CLIENT = "Unknown client"


@dataclass(frozen=True)
class ConflictCandidate:
    occurrence_date: date | str
    time_local: time | str
    timezone: str


@dataclass(frozen=True)
class ConflictingAppointment:
    id: int
    client_name: str
    occurrence_date: date
    time_local: time
    start_at: datetime
    end_at: datetime


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def find_conflicts(
    start_at: datetime,
    end_at: datetime,
    appointments: Iterable,
    exclude_id: int | None = None,
    duration: timedelta = DEFAULT_DURATION,
) -> List[ConflictingAppointment]:
    """Every appointment whose interval overlaps [start_at, end_at), except ``exclude_id``."""
    start_at, end_at = as_utc(start_at), as_utc(end_at)
    out: List[ConflictingAppointment] = []
    for appt in appointments:
        if exclude_id is not None and appt.id == exclude_id:
            continue
        other_start = as_utc(appt.start_at)
        other_end = effective_end(other_start, appt.end_at, duration)
        if not intervals_overlap(start_at, end_at, other_start, other_end):
            continue
        out.append(ConflictingAppointment(
            id=appt.id,
            client_name=appt.client_name or UNKNOWN_CLIENT,
            occurrence_date=appt.occurrence_date,
            time_local=appt.time_local,
            start_at=other_start,
            end_at=other_end,
        ))
    return out


def detect_conflicts(
    db: Session,
    candidate: ConflictCandidate,
    account_id: int,
    exclude_id: int | None = None,
    settings: Settings | None = None,
) -> List[ConflictingAppointment]:
    settings = settings or get_settings()
    duration = timedelta(minutes=settings.APPOINTMENT_DURATION_MINUTES)
    start_at = to_absolute_instant(candidate.occurrence_date, candidate.time_local, candidate.timezone)
    end_at = start_at + duration

    rows = SchedulingRepository(db).find_overlap_candidates(account_id, start_at, end_at, duration)
    return find_conflicts(start_at, end_at, rows, exclude_id=exclude_id, duration=duration)
