"""
Recurring rule use cases.

Every change to a rule leaves its appointments and projections in sync:
  create      -> materialize + derive projections
  update      -> prune occurrences the rule no longer generates,
                 re-materialize (scheduled rows that still carry the
                 previous time, client or title follow the edit), derive
  deactivate  -> prune future, non-completed occurrences
  reactivate  -> fresh materialization + derive (pruned rows are regenerated,
                 not restored)
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict

from sqlalchemy.orm import Session

from agenda.config import Settings, get_settings
from agenda.errors import AuthorizationError, ValidationError
from agenda.domain.recurring_rule import RecurringRule
from agenda.domain.timezones import today_in
from agenda.application.materializer import MaterializeRecurringUseCase, MaterializeResult, RuleRevision
from agenda.application.financial_projection import DeriveFinancialProjectionsUseCase, ProjectionResult
from agenda.application.reconciliation import PruneOnDeactivateUseCase, PruneResult, prune_stale_occurrences
from agenda.infrastructure.db.repository import SchedulingRepository

logger = logging.getLogger(__name__)


@dataclass
class RuleSyncResult:
    rule_id: int
    materialize: MaterializeResult | None = None
    projections: ProjectionResult | None = None
    pruned: PruneResult | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "materialize": self.materialize.to_dict() if self.materialize else None,
            "projections": self.projections.to_dict() if self.projections else None,
            "pruned": self.pruned.to_dict() if self.pruned else None,
        }


class _RuleUseCase:
    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.repo = SchedulingRepository(db)
        self.settings = settings or get_settings()

    def _load(self, account_id: int, rule_id: int):
        row = self.repo.get_rule(account_id, rule_id)
        if row is None:
            raise AuthorizationError(f"Rule #{rule_id} not found")
        return row

    def _sync(
        self,
        result: RuleSyncResult,
        account_id: int,
        today: date | None,
        revision: RuleRevision | None = None,
    ) -> RuleSyncResult:
        result.materialize = MaterializeRecurringUseCase(self.db, self.settings).execute(
            account_id, rule_id=result.rule_id, today=today, revision=revision
        )
        result.projections = DeriveFinancialProjectionsUseCase(self.db).execute(
            account_id, rule_id=result.rule_id, today=today
        )
        return result


class CreateRecurringRuleUseCase(_RuleUseCase):
    def execute(self, account_id: int, today: date | None = None, **fields) -> RuleSyncResult:
        client_id = fields.get("client_id")
        if client_id is not None and self.repo.get_client(account_id, client_id) is None:
            raise ValidationError(f"Client #{client_id} not found", "client_id")

        rule = RecurringRule.create(account_id=account_id, **fields)
        row = self.repo.add_rule(rule.to_row_values())
        self.db.commit()
        logger.info("Recurring rule #%s created for account=%s", row.id, account_id)

        return self._sync(RuleSyncResult(rule_id=row.id), account_id, today)


class UpdateRecurringRuleUseCase(_RuleUseCase):
    def execute(self, account_id: int, rule_id: int, today: date | None = None, **changes) -> RuleSyncResult:
        row = self._load(account_id, rule_id)

        client_id = changes.get("client_id")
        if client_id is not None and self.repo.get_client(account_id, client_id) is None:
            raise ValidationError(f"Client #{client_id} not found", "client_id")

        current = RecurringRule.from_row(row)
        rule = current.update(**changes)
        previous = RuleRevision.of(current)
        for key, value in rule.to_row_values().items():
            setattr(row, key, value)
        self.db.flush()

        result = RuleSyncResult(rule_id=rule_id)
        if not rule.active:
            self.db.commit()
            return result

        result.pruned = prune_stale_occurrences(self.db, rule, today or today_in(rule.timezone))
        self.db.commit()
        logger.info("Recurring rule #%s updated (%s)", rule_id, ", ".join(sorted(changes)))
        revision = previous if previous.changed_by(rule) else None
        return self._sync(result, account_id, today, revision)


class DeactivateRecurringRuleUseCase(_RuleUseCase):
    def execute(self, account_id: int, rule_id: int, today: date | None = None) -> RuleSyncResult:
        row = self._load(account_id, rule_id)
        row.active = False
        self.db.commit()
        logger.info("Recurring rule #%s deactivated", rule_id)

        pruned = PruneOnDeactivateUseCase(self.db).execute(account_id, rule_id, today=today)
        return RuleSyncResult(rule_id=rule_id, pruned=pruned)


class ReactivateRecurringRuleUseCase(_RuleUseCase):
    def execute(self, account_id: int, rule_id: int, today: date | None = None) -> RuleSyncResult:
        row = self._load(account_id, rule_id)
        RecurringRule.from_row(row)  # refuse to reactivate a rule that no longer validates
        row.active = True
        self.db.commit()
        logger.info("Recurring rule #%s reactivated", rule_id)

        return self._sync(RuleSyncResult(rule_id=rule_id), account_id, today)
