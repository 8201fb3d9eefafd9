"""
Scheduling Repository - the store collaborator of the scheduling core.

Every query is scoped by account_id (row ownership is enforced here and by
the database; use cases never see other accounts' rows). Methods flush but
never commit: the calling use case owns the transaction.

Transport-level failures (connection refused, dropped connection) surface
as StoreUnavailable; constraint violations propagate unchanged.
"""
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update, delete, or_, and_
from sqlalchemy.exc import OperationalError, InterfaceError, IntegrityError
from sqlalchemy.orm import Session

from agenda.errors import StoreUnavailable
from agenda.domain.appointment import STATUS_SCHEDULED, STATUS_COMPLETED, DEFAULT_DURATION
from agenda.domain.timezones import as_utc
from agenda.infrastructure.db.models import (
    RecurringRuleModel,
    AppointmentModel,
    FinancialEntryModel,
    FinancialSourceModel,
    ClientModel,
    ServicePackageModel,
)


@contextmanager
def store_call(operation: str):
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailable(f"{operation}: database unavailable ({e.orig or e})") from e


class SchedulingRepository:

    def __init__(self, db: Session):
        self.db = db

    # --- rules ---

    def find_active_rules(self, account_id: int, rule_id: Optional[int] = None) -> List[RecurringRuleModel]:
        with store_call("find_active_rules"):
            q = self.db.query(RecurringRuleModel).filter(
                RecurringRuleModel.account_id == account_id,
                RecurringRuleModel.active == True,
            )
            if rule_id is not None:
                q = q.filter(RecurringRuleModel.id == rule_id)
            return q.order_by(RecurringRuleModel.id).all()

    def get_rule(self, account_id: int, rule_id: int) -> Optional[RecurringRuleModel]:
        with store_call("get_rule"):
            return self.db.query(RecurringRuleModel).filter(
                RecurringRuleModel.id == rule_id,
                RecurringRuleModel.account_id == account_id,
            ).first()

    def add_rule(self, values: Dict[str, Any]) -> RecurringRuleModel:
        with store_call("add_rule"):
            row = RecurringRuleModel(**values)
            self.db.add(row)
            self.db.flush()
            return row

    def account_ids_with_active_rules(self) -> List[int]:
        with store_call("account_ids_with_active_rules"):
            rows = self.db.execute(
                select(RecurringRuleModel.account_id)
                .where(RecurringRuleModel.active == True)
                .distinct()
            ).all()
            return sorted(r[0] for r in rows)

    # --- clients ---

    def get_client(self, account_id: int, client_id: int) -> Optional[ClientModel]:
        with store_call("get_client"):
            return self.db.query(ClientModel).filter(
                ClientModel.id == client_id,
                ClientModel.account_id == account_id,
            ).first()

    def find_client_package_price(self, account_id: int, client_id: int) -> Optional[Decimal]:
        with store_call("find_client_package_price"):
            row = self.db.query(ServicePackageModel.price).join(
                ClientModel, ClientModel.package_id == ServicePackageModel.id
            ).filter(
                ClientModel.id == client_id,
                ClientModel.account_id == account_id,
            ).first()
            return row[0] if row else None

    # --- appointments ---

    def insert_appointment_if_absent(self, values: Dict[str, Any]) -> bool:
        """
        Idempotent insert keyed on (recurring_rule_id, occurrence_date).

        Returns True when a row was created, False when the key already
        existed. The check happens in the database (ON CONFLICT DO NOTHING),
        so concurrent runs cannot create duplicates.
        """
        with store_call("insert_appointment_if_absent"):
            dialect = self.db.get_bind().dialect.name
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            elif dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert
            else:
                return self._insert_with_savepoint(values)

            stmt = insert(AppointmentModel).values(**values).on_conflict_do_nothing(
                index_elements=["recurring_rule_id", "occurrence_date"]
            )
            result = self.db.execute(stmt)
            return result.rowcount == 1

    def _insert_with_savepoint(self, values: Dict[str, Any]) -> bool:
        try:
            with self.db.begin_nested():
                self.db.add(AppointmentModel(**values))
        except IntegrityError:
            return False
        return True

    def add_appointment(self, values: Dict[str, Any]) -> AppointmentModel:
        with store_call("add_appointment"):
            row = AppointmentModel(**values)
            self.db.add(row)
            self.db.flush()
            return row

    def get_appointment(self, account_id: int, appointment_id: int) -> Optional[AppointmentModel]:
        with store_call("get_appointment"):
            return self.db.query(AppointmentModel).filter(
                AppointmentModel.id == appointment_id,
                AppointmentModel.account_id == account_id,
            ).first()

    def find_rule_appointments(
        self,
        account_id: int,
        rule_id: int,
        date_from: date,
        date_to: Optional[date] = None,
    ) -> List[AppointmentModel]:
        with store_call("find_rule_appointments"):
            q = self.db.query(AppointmentModel).filter(
                AppointmentModel.account_id == account_id,
                AppointmentModel.recurring_rule_id == rule_id,
                AppointmentModel.occurrence_date >= date_from,
            )
            if date_to is not None:
                q = q.filter(AppointmentModel.occurrence_date <= date_to)
            return q.order_by(AppointmentModel.occurrence_date).all()

    def find_future_appointments(
        self,
        account_id: int,
        today: date,
        rule_id: Optional[int] = None,
        exclude_statuses: Iterable[str] = (),
    ) -> List[AppointmentModel]:
        with store_call("find_future_appointments"):
            q = self.db.query(AppointmentModel).filter(
                AppointmentModel.account_id == account_id,
                AppointmentModel.occurrence_date >= today,
            )
            if rule_id is not None:
                q = q.filter(AppointmentModel.recurring_rule_id == rule_id)
            else:
                q = q.filter(AppointmentModel.recurring_rule_id != None)
            excluded = list(exclude_statuses)
            if excluded:
                q = q.filter(AppointmentModel.status.notin_(excluded))
            return q.order_by(AppointmentModel.occurrence_date, AppointmentModel.id).all()

    def find_appointments_by_ids(self, account_id: int, ids: Iterable[int]) -> List[AppointmentModel]:
        ids = list(ids)
        if not ids:
            return []
        with store_call("find_appointments_by_ids"):
            return self.db.query(AppointmentModel).filter(
                AppointmentModel.account_id == account_id,
                AppointmentModel.id.in_(ids),
            ).all()

    def list_appointments(
        self,
        account_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[AppointmentModel]:
        with store_call("list_appointments"):
            q = self.db.query(AppointmentModel).filter(AppointmentModel.account_id == account_id)
            if date_from is not None:
                q = q.filter(AppointmentModel.occurrence_date >= date_from)
            if date_to is not None:
                q = q.filter(AppointmentModel.occurrence_date <= date_to)
            return q.order_by(AppointmentModel.start_at, AppointmentModel.id).all()

    def find_overlap_candidates(
        self,
        account_id: int,
        start_at: datetime,
        end_at: datetime,
        duration: timedelta = DEFAULT_DURATION,
    ) -> List[AppointmentModel]:
        """Rows whose [start, effective end) may intersect [start_at, end_at)."""
        start_at, end_at = as_utc(start_at), as_utc(end_at)
        with store_call("find_overlap_candidates"):
            return self.db.query(AppointmentModel).filter(
                AppointmentModel.account_id == account_id,
                AppointmentModel.start_at < end_at,
                or_(
                    AppointmentModel.end_at > start_at,
                    and_(AppointmentModel.end_at == None, AppointmentModel.start_at > start_at - duration),
                ),
            ).order_by(AppointmentModel.start_at).all()

    def update_appointment(self, row: AppointmentModel, fields: Dict[str, Any]) -> AppointmentModel:
        with store_call("update_appointment"):
            for key, value in fields.items():
                setattr(row, key, value)
            self.db.flush()
            return row

    def delete_appointments(self, ids: Iterable[int]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        with store_call("delete_appointments"):
            result = self.db.execute(
                delete(AppointmentModel).where(AppointmentModel.id.in_(ids))
            )
            return result.rowcount

    def complete_past_appointments(self, now: datetime, duration: timedelta = DEFAULT_DURATION) -> int:
        """Bulk flip scheduled rows whose effective end is <= now."""
        now = as_utc(now)
        with store_call("complete_past_appointments"):
            ids = [
                r[0] for r in self.db.execute(
                    select(AppointmentModel.id).where(
                        AppointmentModel.status == STATUS_SCHEDULED,
                        or_(
                            AppointmentModel.end_at <= now,
                            and_(AppointmentModel.end_at == None, AppointmentModel.start_at <= now - duration),
                        ),
                    )
                ).all()
            ]
            if not ids:
                return 0
            self.db.execute(
                update(AppointmentModel)
                .where(AppointmentModel.id.in_(ids), AppointmentModel.status == STATUS_SCHEDULED)
                .values(status=STATUS_COMPLETED)
            )
            return len(ids)

    # --- financial entries ---

    def find_financial_entries(
        self,
        account_id: int,
        appointment_ids: Optional[Iterable[int]] = None,
        status: Optional[str] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
    ) -> List[FinancialEntryModel]:
        with store_call("find_financial_entries"):
            q = self.db.query(FinancialEntryModel).filter(FinancialEntryModel.account_id == account_id)
            if appointment_ids is not None:
                ids = list(appointment_ids)
                if not ids:
                    return []
                q = q.filter(FinancialEntryModel.appointment_id.in_(ids))
            if status is not None:
                q = q.filter(FinancialEntryModel.status == status)
            if due_from is not None:
                q = q.filter(FinancialEntryModel.due_date >= due_from)
            if due_to is not None:
                q = q.filter(FinancialEntryModel.due_date <= due_to)
            return q.order_by(FinancialEntryModel.due_date, FinancialEntryModel.id).all()

    def add_financial_entry(self, values: Dict[str, Any]) -> FinancialEntryModel:
        with store_call("add_financial_entry"):
            row = FinancialEntryModel(**values)
            self.db.add(row)
            self.db.flush()
            return row

    def update_financial_entry(self, row: FinancialEntryModel, fields: Dict[str, Any]) -> FinancialEntryModel:
        with store_call("update_financial_entry"):
            for key, value in fields.items():
                setattr(row, key, value)
            self.db.flush()
            return row

    def delete_financial_entries(self, ids: Iterable[int]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        with store_call("delete_financial_entries"):
            result = self.db.execute(
                delete(FinancialEntryModel).where(FinancialEntryModel.id.in_(ids))
            )
            return result.rowcount

    # --- financial sources ---

    def find_active_sources(self, account_id: int) -> List[FinancialSourceModel]:
        with store_call("find_active_sources"):
            return self.db.query(FinancialSourceModel).filter(
                FinancialSourceModel.account_id == account_id,
                FinancialSourceModel.active == True,
            ).order_by(FinancialSourceModel.id).all()

    def get_source(self, account_id: int, source_id: int) -> Optional[FinancialSourceModel]:
        with store_call("get_source"):
            return self.db.query(FinancialSourceModel).filter(
                FinancialSourceModel.id == source_id,
                FinancialSourceModel.account_id == account_id,
            ).first()

    def add_source(self, values: Dict[str, Any]) -> FinancialSourceModel:
        with store_call("add_source"):
            row = FinancialSourceModel(**values)
            self.db.add(row)
            self.db.flush()
            return row

    def account_ids_with_active_sources(self) -> List[int]:
        with store_call("account_ids_with_active_sources"):
            rows = self.db.execute(
                select(FinancialSourceModel.account_id)
                .where(FinancialSourceModel.active == True)
                .distinct()
            ).all()
            return sorted(r[0] for r in rows)

    def find_entry_keys(
        self,
        account_id: int,
        notes: Iterable[str],
        due_from: date,
        due_to: date,
    ) -> set[tuple[str, date, str]]:
        """(kind, due_date, note) of every entry carrying one of ``notes`` in the date range."""
        notes = list(notes)
        if not notes:
            return set()
        with store_call("find_entry_keys"):
            rows = self.db.execute(
                select(FinancialEntryModel.kind, FinancialEntryModel.due_date, FinancialEntryModel.note)
                .where(
                    FinancialEntryModel.account_id == account_id,
                    FinancialEntryModel.note.in_(notes),
                    FinancialEntryModel.due_date >= due_from,
                    FinancialEntryModel.due_date <= due_to,
                )
            ).all()
            return {(r[0], r[1], r[2]) for r in rows}
