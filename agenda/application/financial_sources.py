"""
Fixed and recurring financial sources.

A source (rent, a monthly retainer, a weekly class fee...) projects one
"expected" entry per due date over a rolling window of
FINANCIAL_WINDOW_DAYS. An entry is identified by (kind, due_date, note), so
re-running never duplicates. Entries of deactivated sources are removed by
the reconciliation pass, not here.
"""
import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agenda.config import Settings, get_settings
from agenda.errors import AuthorizationError, BatchResult, ValidationError
from agenda.domain.financial_entry import STATUS_EXPECTED
from agenda.domain.financial_source import FinancialSource, source_due_dates
from agenda.domain.timezones import today_in
from agenda.application.materializer import window_for
from agenda.infrastructure.db.repository import SchedulingRepository

logger = logging.getLogger(__name__)


@dataclass
class SourceMaterializeResult(BatchResult):
    created: int = 0
    skipped: int = 0
    sources_considered: int = 0
    window_days: int = 0


class CreateFinancialSourceUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository(db)

    def execute(self, account_id: int, **fields) -> int:
        source = FinancialSource.create(account_id=account_id, **fields)
        row = self.repo.add_source(source.to_row_values())
        self.db.commit()
        logger.info("Financial source #%s (%s %s) created for account=%s",
                    row.id, source.source_type, source.kind, account_id)
        return row.id


class DeactivateFinancialSourceUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository(db)

    def execute(self, account_id: int, source_id: int) -> None:
        row = self.repo.get_source(account_id, source_id)
        if row is None:
            raise AuthorizationError(f"Financial source #{source_id} not found")
        row.active = False
        self.db.commit()
        logger.info("Financial source #%s deactivated", source_id)


class MaterializeFinancialSourcesUseCase:
    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.repo = SchedulingRepository(db)
        self.settings = settings or get_settings()

    def execute(
        self,
        account_id: int,
        window_days: int | None = None,
        today: date | None = None,
    ) -> SourceMaterializeResult:
        if window_days is None:
            window_days = self.settings.FINANCIAL_WINDOW_DAYS
        if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days < 1:
            raise ValidationError("window_days must be an integer >= 1", "window_days")

        window_start, window_end = window_for(today or today_in(self.settings.TIMEZONE), window_days)
        result = SourceMaterializeResult(window_days=window_days)

        sources = []
        for row in self.repo.find_active_sources(account_id):
            try:
                sources.append(FinancialSource.from_row(row))
            except ValidationError as e:
                logger.warning("Skipping invalid financial source #%s: %s", row.id, e)
                result.add_error(f"source #{row.id}: {e}")
        result.sources_considered = len(sources)

        existing = self.repo.find_entry_keys(account_id, {s.note for s in sources}, window_start, window_end)

        for source in sources:
            for due in source_due_dates(source, window_start, window_end):
                key = (source.kind, due, source.note)
                if key in existing:
                    result.skipped += 1
                    continue
                try:
                    with self.db.begin_nested():
                        self.repo.add_financial_entry({
                            "account_id": account_id,
                            "appointment_id": None,
                            "due_date": due,
                            "amount": source.amount,
                            "status": STATUS_EXPECTED,
                            "kind": source.kind,
                            "note": source.note,
                        })
                    result.created += 1
                    existing.add(key)
                except SQLAlchemyError as e:
                    logger.exception("Entry creation failed for source #%s on %s", source.id, due)
                    result.add_error(f"source #{source.id} {due.isoformat()}: {e}")

        self.db.commit()
        logger.info(
            "Financial sources account=%s: created=%d skipped=%d sources=%d errors=%d",
            account_id, result.created, result.skipped, result.sources_considered, len(result.errors),
        )
        return result
