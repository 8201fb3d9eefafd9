"""
FinancialSource domain entity - fixed or recurring income/expense.

A source projects one expected financial entry per due date, noted
"Fixed: <description>" or "Recurring: <description>". (kind, due_date, note)
identifies a projection, so the note is also what ties an entry back to
its source.
"""
import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

from agenda.errors import ValidationError
from agenda.domain.financial_entry import KIND_INCOME, KIND_EXPENSE
from agenda.domain.timezones import parse_local_date

SOURCE_FIXED = "fixed"
SOURCE_RECURRING = "recurring"
SOURCE_TYPES = (SOURCE_FIXED, SOURCE_RECURRING)

FREQUENCY_DAILY = "daily"
FREQUENCY_WEEKLY = "weekly"
FREQUENCY_MONTHLY = "monthly"
FREQUENCIES = (FREQUENCY_DAILY, FREQUENCY_WEEKLY, FREQUENCY_MONTHLY)

FIXED_NOTE_PREFIX = "Fixed: "
RECURRING_NOTE_PREFIX = "Recurring: "
SOURCE_NOTE_PREFIXES = (FIXED_NOTE_PREFIX, RECURRING_NOTE_PREFIX)

MAX_DESCRIPTION_LENGTH = 200


def source_note(source_type: str, description: str) -> str:
    prefix = FIXED_NOTE_PREFIX if source_type == SOURCE_FIXED else RECURRING_NOTE_PREFIX
    return f"{prefix}{description}"


def is_source_note(note: str | None) -> bool:
    return bool(note) and note.startswith(SOURCE_NOTE_PREFIXES)


@dataclass(frozen=True)
class FinancialSource:
    account_id: int
    kind: str
    description: str
    amount: Decimal
    start_date: date
    source_type: str = SOURCE_FIXED
    frequency: str | None = None
    day: int | None = None
    active: bool = True
    id: int | None = None

    @classmethod
    def create(
        cls,
        account_id: int,
        kind: str | None,
        description: str | None,
        amount: Any,
        start_date: str | date | None,
        source_type: str | None = SOURCE_FIXED,
        frequency: str | None = None,
        day: int | None = None,
        active: bool = True,
        id: int | None = None,
    ) -> "FinancialSource":
        errors: Dict[str, str] = {}

        kind = (kind or "").strip().upper()
        if kind not in (KIND_INCOME, KIND_EXPENSE):
            errors["kind"] = "kind must be INCOME or EXPENSE"

        description = (description or "").strip()
        if not description:
            errors["description"] = "description is required"
        elif len(description) > MAX_DESCRIPTION_LENGTH:
            errors["description"] = f"description must be at most {MAX_DESCRIPTION_LENGTH} characters"

        parsed_amount = None
        if amount is None or amount == "":
            errors["amount"] = "amount is required"
        else:
            try:
                parsed_amount = Decimal(str(amount).replace(",", "."))
            except InvalidOperation:
                errors["amount"] = f"invalid amount: {amount}"
            else:
                if parsed_amount < 0:
                    errors["amount"] = "amount must be >= 0"

        parsed_start = None
        if start_date is None or start_date == "":
            errors["start_date"] = "start_date is required"
        else:
            try:
                parsed_start = parse_local_date(start_date, "start_date")
            except ValidationError as e:
                errors.update(e.errors)

        source_type = (source_type or SOURCE_FIXED).strip().lower()
        if source_type not in SOURCE_TYPES:
            errors["source_type"] = "source_type must be fixed or recurring"

        if source_type == SOURCE_RECURRING:
            frequency = (frequency or "").strip().lower()
            if frequency not in FREQUENCIES:
                errors["frequency"] = "frequency must be daily, weekly or monthly"
            if frequency == FREQUENCY_MONTHLY:
                if day is None and parsed_start is not None:
                    day = parsed_start.day
                if not isinstance(day, int) or isinstance(day, bool) or not 1 <= day <= 31:
                    errors["day"] = "day must be between 1 and 31"
            else:
                day = None
        else:
            # fixed sources repeat on start_date's day of month
            frequency = None
            day = None

        if errors:
            raise ValidationError(errors)

        return cls(
            id=id,
            account_id=account_id,
            kind=kind,
            description=description,
            amount=parsed_amount,
            start_date=parsed_start,
            source_type=source_type,
            frequency=frequency,
            day=day,
            active=active,
        )

    @property
    def note(self) -> str:
        return source_note(self.source_type, self.description)

    def to_row_values(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "kind": self.kind,
            "description": self.description,
            "amount": self.amount,
            "start_date": self.start_date,
            "source_type": self.source_type,
            "frequency": self.frequency,
            "day": self.day,
            "active": self.active,
        }

    @classmethod
    def from_row(cls, row) -> "FinancialSource":
        return cls.create(
            id=row.id,
            account_id=row.account_id,
            kind=row.kind,
            description=row.description,
            amount=row.amount,
            start_date=row.start_date,
            source_type=row.source_type,
            frequency=row.frequency,
            day=row.day,
            active=row.active,
        )


def _on_day_of_month(year: int, month: int, day: int) -> date:
    """``day`` in the given month, clamped to its last day (31 -> Feb 28/29)."""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _monthly(day: int, first: date, last: date) -> List[date]:
    out = []
    year, month = first.year, first.month
    while True:
        d = _on_day_of_month(year, month, day)
        if d > last:
            return out
        if d >= first:
            out.append(d)
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)


def source_due_dates(source: FinancialSource, window_start: date, window_end: date) -> List[date]:
    """Due dates of ``source`` in [window_start, window_end], ascending.

    Weekly sources repeat on start_date's weekday.
    """
    first = max(source.start_date, window_start)
    if first > window_end:
        return []

    if source.source_type == SOURCE_FIXED:
        return _monthly(source.start_date.day, first, window_end)
    if source.frequency == FREQUENCY_MONTHLY:
        return _monthly(source.day, first, window_end)

    step = 7 if source.frequency == FREQUENCY_WEEKLY else 1
    offset = -(first - source.start_date).days % step
    out = []
    d = first + timedelta(days=offset)
    while d <= window_end:
        out.append(d)
        d += timedelta(days=step)
    return out
