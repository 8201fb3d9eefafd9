"""
Past-appointment status sweeper.

Persists what effective_status() already reports: every "scheduled"
appointment whose end has passed becomes "completed". Cancelled, no-show
and completed rows are never touched, so a second run finds nothing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from agenda.config import Settings, get_settings
from agenda.domain.timezones import utcnow
from agenda.infrastructure.db.repository import SchedulingRepository

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    updated: int = 0


def sweep_past_appointments(db: Session, now: datetime | None = None, settings: Settings | None = None) -> SweepResult:
    settings = settings or get_settings()
    now = now or utcnow()
    duration = timedelta(minutes=settings.APPOINTMENT_DURATION_MINUTES)

    updated = SchedulingRepository(db).complete_past_appointments(now, duration)
    db.commit()

    if updated:
        logger.info("Status sweep: %d appointment(s) marked completed", updated)
    else:
        logger.info("Status sweep: no appointments to update")
    return SweepResult(updated=updated)
