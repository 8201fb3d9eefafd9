"""
SQLAlchemy ORM models (scheduling, clients, financial projections)
"""
from decimal import Decimal
from datetime import date as date_type, time as time_type, datetime
from sqlalchemy import String, Integer, SmallInteger, Text, TIMESTAMP, Date, Time, func, Boolean, Numeric, UniqueConstraint, Index, true, false
from sqlalchemy.orm import Mapped, mapped_column

from agenda.infrastructure.db.session import Base


class User(Base):
    """
    Signed-in user; user.id doubles as the account_id that scopes all rows
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )


# ============================================================================
# Clients
# ============================================================================


class ServicePackageModel(Base):
    """Priced service package a client can be subscribed to"""
    __tablename__ = "service_packages"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(precision=20, scale=2), nullable=True)


class ClientModel(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    package_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


# ============================================================================
# Recurring rules and appointments
# ============================================================================


class RecurringRuleModel(Base):
    """Weekly recurrence policy that materializes into appointments"""
    __tablename__ = "recurring_rules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    weekdays: Mapped[str] = mapped_column(String(32), nullable=False)  # "1,4" (0=Sunday..6=Saturday)
    time_local: Mapped[time_type] = mapped_column(Time, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    interval_weeks: Mapped[int] = mapped_column(SmallInteger, nullable=False, server_default="1")
    start_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    end_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    occurrence_cap: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(precision=20, scale=2), nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=true())

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index('ix_recurring_rule_account_active', 'account_id', 'active'),
    )


class AppointmentModel(Base):
    """
    Appointment - one-off or materialized from a recurring rule.

    start_at (UTC) is authoritative; occurrence_date/time_local/timezone are
    the local view it was created from.
    """
    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    client_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service: Mapped[str | None] = mapped_column(String(255), nullable=True)

    start_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    occurrence_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    time_local: Mapped[time_type] = mapped_column(Time, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)

    recurring_rule_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    amount: Mapped[Decimal | None] = mapped_column(Numeric(precision=20, scale=2), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="scheduled")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('recurring_rule_id', 'occurrence_date', name='uq_appointment_rule_occurrence'),
        Index('ix_appointment_account_start', 'account_id', 'start_at'),
        Index('ix_appointment_status_end', 'status', 'end_at'),
    )


# ============================================================================
# Financial projections
# ============================================================================


class FinancialEntryModel(Base):
    """Expected / realized income or expense, optionally tied to an appointment"""
    __tablename__ = "financial_entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    appointment_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    due_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(precision=20, scale=2), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="expected")  # expected/realized/cancelled
    kind: Mapped[str] = mapped_column(String(16), nullable=False, server_default="INCOME")  # INCOME/EXPENSE
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index('ix_fin_entry_account_due', 'account_id', 'due_date', 'status'),
    )


class FinancialSourceModel(Base):
    """
    Fixed or recurring income/expense that projects expected entries by date

    source_type "fixed": monthly on start_date's day of month.
    source_type "recurring": frequency daily / weekly / monthly (on ``day``).
    """
    __tablename__ = "financial_sources"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # INCOME/EXPENSE
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    start_date: Mapped[date_type] = mapped_column(Date, nullable=False)

    source_type: Mapped[str] = mapped_column(String(16), nullable=False)  # fixed/recurring
    frequency: Mapped[str | None] = mapped_column(String(16), nullable=True)  # daily/weekly/monthly
    day: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)  # day of month for monthly

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=true())

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index('ix_fin_source_account_active', 'account_id', 'active'),
    )
