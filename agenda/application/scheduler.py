"""
Background scheduler: runs periodic jobs inside the FastAPI process.

Jobs:
  - Past-appointment status sweep (every SWEEP_INTERVAL_MINUTES)
  - Recurring materialization + financial projections for every account
    with active rules, then expected entries of active financial sources
    (daily at MATERIALIZE_CRON_HOUR UTC)

Each job opens its own session; nothing is shared between runs.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from agenda.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def run_status_sweep():
    from agenda.infrastructure.db.session import session_scope
    from agenda.application.status_sweeper import sweep_past_appointments

    try:
        with session_scope() as db:
            return sweep_past_appointments(db)
    except Exception:
        logger.exception("Status sweep job failed")


def materialize_all_accounts(db, settings=None, today=None) -> dict[int, dict]:
    """Materialize + derive projections for every account with active rules."""
    from agenda.infrastructure.db.repository import SchedulingRepository
    from agenda.application.materializer import MaterializeRecurringUseCase
    from agenda.application.financial_projection import DeriveFinancialProjectionsUseCase

    summary = {}
    for account_id in SchedulingRepository(db).account_ids_with_active_rules():
        try:
            materialized = MaterializeRecurringUseCase(db, settings).execute(account_id, today=today)
            projected = DeriveFinancialProjectionsUseCase(db).execute(account_id, today=today)
        except Exception:
            db.rollback()
            logger.exception("Materialization failed for account_id=%s", account_id)
            continue
        summary[account_id] = {
            "materialize": materialized.to_dict(),
            "projections": projected.to_dict(),
        }
    logger.info("Materialization job: processed %d account(s)", len(summary))
    return summary


def materialize_sources_all_accounts(db, settings=None, today=None) -> dict[int, dict]:
    """Project expected entries for every account with active financial sources."""
    from agenda.infrastructure.db.repository import SchedulingRepository
    from agenda.application.financial_sources import MaterializeFinancialSourcesUseCase

    summary = {}
    for account_id in SchedulingRepository(db).account_ids_with_active_sources():
        try:
            summary[account_id] = MaterializeFinancialSourcesUseCase(db, settings).execute(
                account_id, today=today
            ).to_dict()
        except Exception:
            db.rollback()
            logger.exception("Financial source materialization failed for account_id=%s", account_id)
    logger.info("Financial sources job: processed %d account(s)", len(summary))
    return summary


def run_materialization():
    from agenda.infrastructure.db.session import session_scope

    try:
        with session_scope() as db:
            return {
                "rules": materialize_all_accounts(db),
                "sources": materialize_sources_all_accounts(db),
            }
    except Exception:
        logger.exception("Materialization job failed")


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()

    scheduler.add_job(
        run_status_sweep,
        "interval",
        minutes=settings.SWEEP_INTERVAL_MINUTES,
        id="status_sweep",
        replace_existing=True,
    )

    scheduler.add_job(
        run_materialization,
        CronTrigger(hour=settings.MATERIALIZE_CRON_HOUR, minute=0),
        id="materialize_recurring",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: status_sweep (every %d min), materialize_recurring (%02d:00 UTC)",
        settings.SWEEP_INTERVAL_MINUTES, settings.MATERIALIZE_CRON_HOUR,
    )


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
