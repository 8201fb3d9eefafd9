"""
Pruning and reconciliation of materialized appointments and their
expected financial entries.

- PruneOnDeactivateUseCase: a paused rule loses every future, not yet
  completed appointment together with its expected entries.
- prune_stale_occurrences: after a rule edit, future occurrences the rule no
  longer generates are removed the same way.
- ReconcileFinancialEntriesUseCase: admin maintenance pass that drops stale
  future projections (of appointments and of inactive financial sources)
  and deduplicates entries on (note, due_date, kind).

All three are safe to re-run: a second pass finds nothing left to delete.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.config import Settings, get_settings
from agenda.errors import AuthorizationError, BatchResult
from agenda.domain.appointment import STATUS_COMPLETED, STATUS_CANCELLED
from agenda.domain.financial_entry import STATUS_EXPECTED
from agenda.domain.financial_source import is_source_note, source_note
from agenda.domain.recurrence import generate_occurrence_dates
from agenda.domain.recurring_rule import RecurringRule
from agenda.domain.timezones import as_utc, today_in
from agenda.infrastructure.db.repository import SchedulingRepository

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class PruneResult(BatchResult):
    appointments_removed: int = 0
    finance_removed: int = 0


@dataclass
class ReconcileResult(BatchResult):
    future_removed: int = 0
    duplicates_removed: int = 0


def _remove_with_projections(db: Session, repo: SchedulingRepository, account_id: int, appointments, result: PruneResult) -> None:
    """Delete each appointment and its expected entries in one savepoint per appointment."""
    if not appointments:
        return
    entries = repo.find_financial_entries(
        account_id, appointment_ids=[a.id for a in appointments], status=STATUS_EXPECTED
    )
    entries_by_appt = defaultdict(list)
    for e in entries:
        entries_by_appt[e.appointment_id].append(e.id)

    for appt in appointments:
        entry_ids = entries_by_appt.get(appt.id, [])
        try:
            with db.begin_nested():
                removed_entries = repo.delete_financial_entries(entry_ids)
                removed_appts = repo.delete_appointments([appt.id])
            result.finance_removed += removed_entries
            result.appointments_removed += removed_appts
        except SQLAlchemyError as e:
            logger.exception("Prune failed for appointment #%s", appt.id)
            result.add_error(f"appointment #{appt.id}: {e}")


class PruneOnDeactivateUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository(db)

    def execute(self, account_id: int, rule_id: int, today: date | None = None) -> PruneResult:
        rule = self.repo.get_rule(account_id, rule_id)
        if rule is None:
            raise AuthorizationError(f"Rule #{rule_id} not found")

        today = today or today_in(rule.timezone)
        appointments = self.repo.find_future_appointments(
            account_id, today, rule_id=rule_id, exclude_statuses=[STATUS_COMPLETED]
        )
        result = PruneResult()
        _remove_with_projections(self.db, self.repo, account_id, appointments, result)
        self.db.commit()

        logger.info(
            "Pruned rule #%s: appointments_removed=%d finance_removed=%d errors=%d",
            rule_id, result.appointments_removed, result.finance_removed, len(result.errors),
        )
        return result


def prune_stale_occurrences(db: Session, rule: RecurringRule, today: date) -> PruneResult:
    """Remove future, non-completed occurrences that ``rule`` no longer generates.

    Does not commit; the caller's use case does.
    """
    repo = SchedulingRepository(db)
    result = PruneResult()
    appointments = repo.find_future_appointments(
        rule.account_id, today, rule_id=rule.id, exclude_statuses=[STATUS_COMPLETED]
    )
    if not appointments:
        return result

    last = max(a.occurrence_date for a in appointments)
    valid = set(generate_occurrence_dates(rule.spec(), today, last))
    stale = [a for a in appointments if a.occurrence_date not in valid]
    _remove_with_projections(db, repo, rule.account_id, stale, result)
    if stale:
        logger.info("Rule #%s edit: pruned %d stale occurrence(s)", rule.id, result.appointments_removed)
    return result


class ReconcileFinancialEntriesUseCase:
    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.repo = SchedulingRepository(db)
        self.settings = settings or get_settings()

    def execute(self, account_id: int, today: date | None = None) -> ReconcileResult:
        today = today or today_in(self.settings.TIMEZONE)
        result = ReconcileResult()
        self._remove_stale_projections(account_id, today, result)
        self._deduplicate(account_id, result)
        self.db.commit()

        logger.info(
            "Reconciled account=%s: future_removed=%d duplicates_removed=%d errors=%d",
            account_id, result.future_removed, result.duplicates_removed, len(result.errors),
        )
        return result

    def _remove_stale_projections(self, account_id: int, today: date, result: ReconcileResult) -> None:
        """Future expected entries whose origin is gone.

        A linked entry is stale when its appointment is gone, cancelled, or
        owned by a paused rule. An unlinked entry noted "Fixed: " or
        "Recurring: " is stale when no active source carries that kind and
        note. Other unlinked entries are manual projections and are kept.
        """
        future = self.repo.find_financial_entries(account_id, status=STATUS_EXPECTED, due_from=today)
        if not future:
            return

        linked = [e for e in future if e.appointment_id is not None]
        appointments = {
            a.id: a for a in self.repo.find_appointments_by_ids(account_id, {e.appointment_id for e in linked})
        }
        active_rule_ids = {r.id for r in self.repo.find_active_rules(account_id)}
        live_sources = {
            (s.kind, source_note(s.source_type, s.description))
            for s in self.repo.find_active_sources(account_id)
        }

        stale_ids = []
        for e in future:
            if e.appointment_id is None:
                if is_source_note(e.note) and (e.kind, e.note) not in live_sources:
                    stale_ids.append(e.id)
                continue
            appt = appointments.get(e.appointment_id)
            if appt is None or appt.status == STATUS_CANCELLED:
                stale_ids.append(e.id)
            elif appt.recurring_rule_id is not None and appt.recurring_rule_id not in active_rule_ids:
                stale_ids.append(e.id)

        if not stale_ids:
            return
        try:
            with self.db.begin_nested():
                result.future_removed += self.repo.delete_financial_entries(stale_ids)
        except SQLAlchemyError as e:
            logger.exception("Stale projection cleanup failed for account=%s", account_id)
            result.add_error(f"stale projections: {e}")

    def _deduplicate(self, account_id: int, result: ReconcileResult) -> None:
        """Keep the most recently created entry per (note, due_date, kind).

        Each group is deleted inside its own savepoint: all or nothing.
        Entries without a note are never grouped.
        """
        groups = defaultdict(list)
        for e in self.repo.find_financial_entries(account_id):
            if not e.note:
                continue
            groups[(e.note, e.due_date, e.kind)].append(e)

        for key, members in groups.items():
            if len(members) < 2:
                continue
            members.sort(
                key=lambda e: (as_utc(e.created_at) if e.created_at is not None else _EPOCH, e.id),
                reverse=True,
            )
            duplicate_ids = [e.id for e in members[1:]]
            try:
                with self.db.begin_nested():
                    removed = self.repo.delete_financial_entries(duplicate_ids)
                    if removed != len(duplicate_ids):
                        raise SQLAlchemyError(
                            f"expected to remove {len(duplicate_ids)} duplicates, removed {removed}"
                        )
                result.duplicates_removed += removed
            except SQLAlchemyError as e:
                logger.exception("Dedup failed for group %s", key)
                result.add_error(f"group {key[0]!r} {key[1].isoformat()} {key[2]}: {e}")
