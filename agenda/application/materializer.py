"""
Materializer - turns recurring rules into appointment rows.

For every active rule the occurrence generator is run over a rolling window
[today, today + window_days - 1]; each date becomes an appointment keyed on
(recurring_rule_id, occurrence_date). The insert is idempotent in the
database, so re-running (or running concurrently) never duplicates rows.

Rows that already exist are left alone ("skipped"): manual edits to a single
occurrence survive every scheduled run. Only a rule edit, passed in as a
``RuleRevision`` holding the rule's previous values, rewrites existing rows,
and only those still "scheduled" and still carrying the previous values.
Those are counted as "updated".
"""
import logging
from dataclasses import dataclass
from datetime import date, time, timedelta
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.config import Settings, get_settings
from agenda.errors import AuthorizationError, BatchResult, ValidationError
from agenda.domain.appointment import STATUS_SCHEDULED
from agenda.domain.recurrence import generate_occurrence_dates
from agenda.domain.recurring_rule import RecurringRule
from agenda.domain.timezones import to_absolute_instant, as_utc, today_in
from agenda.infrastructure.db.repository import SchedulingRepository

logger = logging.getLogger(__name__)


@dataclass
class MaterializeResult(BatchResult):
    created: int = 0
    updated: int = 0
    skipped: int = 0
    window_days: int = 0


@dataclass(frozen=True)
class RuleRevision:
    """A rule's values before an edit."""
    time_local: time
    timezone: str
    client_id: int
    title: str | None

    @classmethod
    def of(cls, rule: RecurringRule) -> "RuleRevision":
        return cls(
            time_local=rule.time_local,
            timezone=rule.timezone,
            client_id=rule.client_id,
            title=rule.title,
        )

    def changed_by(self, rule: RecurringRule) -> bool:
        return self != RuleRevision.of(rule)


def window_for(today: date, window_days: int) -> tuple[date, date]:
    """window_days calendar days starting today (both bounds inclusive)."""
    return today, today + timedelta(days=window_days - 1)


class MaterializeRecurringUseCase:
    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.repo = SchedulingRepository(db)
        self.settings = settings or get_settings()

    def execute(
        self,
        account_id: int,
        rule_id: int | None = None,
        window_days: int | None = None,
        today: date | None = None,
        revision: RuleRevision | None = None,
    ) -> MaterializeResult:
        if window_days is None:
            window_days = self.settings.MATERIALIZE_WINDOW_DAYS
        if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days < 1:
            raise ValidationError("window_days must be an integer >= 1", "window_days")
        if revision is not None and rule_id is None:
            raise ValidationError("a rule revision applies to a single rule", "rule_id")

        if rule_id is not None and self.repo.get_rule(account_id, rule_id) is None:
            raise AuthorizationError(f"Rule #{rule_id} not found")

        result = MaterializeResult(window_days=window_days)
        for row in self.repo.find_active_rules(account_id, rule_id):
            try:
                rule = RecurringRule.from_row(row)
            except ValidationError as e:
                logger.warning("Skipping invalid rule #%s: %s", row.id, e)
                result.add_error(f"rule #{row.id}: {e}")
                continue
            self._materialize_rule(rule, today or today_in(rule.timezone), window_days, result, revision)

        self.db.commit()
        logger.info(
            "Materialized account=%s rule=%s: created=%d updated=%d skipped=%d errors=%d",
            account_id, rule_id, result.created, result.updated, result.skipped, len(result.errors),
        )
        return result

    def _materialize_rule(
        self,
        rule: RecurringRule,
        today: date,
        window_days: int,
        result: MaterializeResult,
        revision: RuleRevision | None,
    ) -> None:
        window_start, window_end = window_for(today, window_days)
        dates = generate_occurrence_dates(rule.spec(), window_start, window_end)
        if not dates:
            return

        amount = self._resolve_amount(rule)
        client = self.repo.get_client(rule.account_id, rule.client_id)
        client_name = client.name if client else None
        duration = timedelta(minutes=self.settings.APPOINTMENT_DURATION_MINUTES)

        existing = {
            a.occurrence_date: a
            for a in self.repo.find_rule_appointments(rule.account_id, rule.id, window_start, window_end)
        }

        for d in dates:
            start_at = to_absolute_instant(d, rule.time_local, rule.timezone)
            row = existing.get(d)
            try:
                with self.db.begin_nested():
                    if row is None:
                        created = self.repo.insert_appointment_if_absent({
                            "account_id": rule.account_id,
                            "recurring_rule_id": rule.id,
                            "occurrence_date": d,
                            "time_local": rule.time_local,
                            "timezone": rule.timezone,
                            "start_at": start_at,
                            "end_at": start_at + duration,
                            "client_id": rule.client_id,
                            "client_name": client_name,
                            "service": rule.title,
                            "amount": amount,
                            "status": STATUS_SCHEDULED,
                        })
                        if created:
                            result.created += 1
                        else:
                            result.skipped += 1
                        continue

                    changes = {}
                    if revision is not None:
                        changes = self._revised_fields(row, rule, revision, start_at, duration, client_name)
                    if changes:
                        self.repo.update_appointment(row, changes)
                        result.updated += 1
                    else:
                        result.skipped += 1
            except SQLAlchemyError as e:
                logger.exception("Materialize failed for rule #%s on %s", rule.id, d)
                result.add_error(f"rule #{rule.id} {d.isoformat()}: {e}")

    def _resolve_amount(self, rule: RecurringRule) -> Decimal | None:
        if rule.amount is not None:
            return rule.amount
        return self.repo.find_client_package_price(rule.account_id, rule.client_id)

    @staticmethod
    def _revised_fields(row, rule: RecurringRule, revision: RuleRevision, start_at, duration, client_name) -> Dict[str, Any]:
        """Fields of a scheduled row that followed the previous rule values."""
        if row.status != STATUS_SCHEDULED:
            return {}
        changes: Dict[str, Any] = {}

        moved = (rule.time_local, rule.timezone) != (revision.time_local, revision.timezone)
        if moved and (row.time_local, row.timezone) == (revision.time_local, revision.timezone):
            old_start = as_utc(row.start_at)
            length = as_utc(row.end_at) - old_start if row.end_at is not None else duration
            changes.update(
                start_at=start_at,
                end_at=start_at + length,
                time_local=rule.time_local,
                timezone=rule.timezone,
            )

        if rule.client_id != revision.client_id and row.client_id == revision.client_id:
            changes.update(client_id=rule.client_id, client_name=client_name)

        if rule.title != revision.title and row.service == revision.title:
            changes["service"] = rule.title

        return changes
