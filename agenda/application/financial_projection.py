"""
Financial projection derivation for materialized appointments.

Per active rule:
  1. effective amount = rule.amount, else the client's package price, else 0
  2. future rule-linked appointments (not completed) with no amount get it
  3. their expected entries with no amount get it too
  4. future billable appointments without any linked entry get an
     "expected" INCOME entry due on the occurrence date

Completed appointments and appointments carrying a non-zero amount are never
modified: the user may have charged a different price for that session.
When the effective amount is itself 0 there is nothing to backfill, so a
second run over the same rows reports no updates.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.errors import AuthorizationError, BatchResult
from agenda.domain.appointment import STATUS_COMPLETED, NON_BILLABLE_STATUSES
from agenda.domain.financial_entry import (
    STATUS_EXPECTED, KIND_INCOME, appointment_entry_note, is_missing_amount,
)
from agenda.domain.timezones import today_in
from agenda.infrastructure.db.repository import SchedulingRepository

logger = logging.getLogger(__name__)


@dataclass
class ProjectionResult(BatchResult):
    appointments_updated: int = 0
    finance_updated: int = 0
    finance_created: int = 0
    rules_considered: int = 0
    skipped: int = 0


class DeriveFinancialProjectionsUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository(db)

    def execute(
        self,
        account_id: int,
        rule_id: int | None = None,
        today: date | None = None,
    ) -> ProjectionResult:
        if rule_id is not None and self.repo.get_rule(account_id, rule_id) is None:
            raise AuthorizationError(f"Rule #{rule_id} not found")

        rules = self.repo.find_active_rules(account_id, rule_id)
        result = ProjectionResult(rules_considered=len(rules))

        for rule in rules:
            effective = self._effective_amount(rule)
            rule_today = today or today_in(rule.timezone)
            self._derive_for_rule(account_id, rule, effective, rule_today, result)

        self.db.commit()
        logger.info(
            "Projections account=%s: appointments_updated=%d finance_updated=%d "
            "finance_created=%d rules=%d skipped=%d errors=%d",
            account_id, result.appointments_updated, result.finance_updated,
            result.finance_created, result.rules_considered, result.skipped, len(result.errors),
        )
        return result

    def _effective_amount(self, rule) -> Decimal:
        if rule.amount is not None:
            return Decimal(rule.amount)
        price = self.repo.find_client_package_price(rule.account_id, rule.client_id)
        return Decimal(price) if price is not None else Decimal("0")

    def _derive_for_rule(self, account_id: int, rule, effective: Decimal, today: date, result: ProjectionResult) -> None:
        appointments = self.repo.find_future_appointments(account_id, today, rule_id=rule.id)

        backfilled_ids = set()
        for appt in appointments:
            if appt.status == STATUS_COMPLETED:
                result.skipped += 1
                continue
            if not is_missing_amount(appt.amount):
                if Decimal(appt.amount) != effective:
                    result.skipped += 1  # customized by the user
                continue
            if is_missing_amount(effective):
                continue  # no rule amount or package price: nothing to fill in
            try:
                with self.db.begin_nested():
                    self.repo.update_appointment(appt, {"amount": effective})
                result.appointments_updated += 1
                backfilled_ids.add(appt.id)
            except SQLAlchemyError as e:
                logger.exception("Amount backfill failed for appointment #%s", appt.id)
                result.add_error(f"appointment #{appt.id}: {e}")

        entries = self.repo.find_financial_entries(account_id, appointment_ids=[a.id for a in appointments])
        linked = {e.appointment_id for e in entries}

        for entry in entries:
            if entry.appointment_id not in backfilled_ids:
                continue
            if entry.status != STATUS_EXPECTED or not is_missing_amount(entry.amount):
                continue
            try:
                with self.db.begin_nested():
                    self.repo.update_financial_entry(entry, {"amount": effective})
                result.finance_updated += 1
            except SQLAlchemyError as e:
                logger.exception("Amount backfill failed for financial entry #%s", entry.id)
                result.add_error(f"financial entry #{entry.id}: {e}")

        for appt in appointments:
            if appt.id in linked or appt.status in NON_BILLABLE_STATUSES:
                continue
            try:
                with self.db.begin_nested():
                    self.repo.add_financial_entry({
                        "account_id": account_id,
                        "appointment_id": appt.id,
                        "due_date": appt.occurrence_date,
                        "amount": appt.amount if appt.amount is not None else effective,
                        "status": STATUS_EXPECTED,
                        "kind": KIND_INCOME,
                        "note": appointment_entry_note(appt.client_name, appt.time_local),
                    })
                result.finance_created += 1
            except SQLAlchemyError as e:
                logger.exception("Expected entry creation failed for appointment #%s", appt.id)
                result.add_error(f"appointment #{appt.id} projection: {e}")
