"""RecurringRule domain entity - validated recurrence policy for appointments"""
from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, Iterable

from agenda.errors import ValidationError
from agenda.domain.recurrence import RuleSpec, normalize_weekdays, parse_weekdays, format_weekdays
from agenda.domain.timezones import get_zone, parse_local_date, parse_local_time

EDITABLE_FIELDS = (
    "client_id", "title", "weekdays", "time_local", "timezone", "interval_weeks",
    "start_date", "end_date", "occurrence_cap", "amount",
)


@dataclass(frozen=True)
class RecurringRule:
    account_id: int
    client_id: int
    weekdays: FrozenSet[int]
    time_local: time
    timezone: str
    interval_weeks: int
    start_date: date
    end_date: date | None = None
    occurrence_cap: int | None = None
    amount: Decimal | None = None
    title: str | None = None
    active: bool = True
    id: int | None = None

    @classmethod
    def create(
        cls,
        account_id: int,
        client_id: int,
        weekdays: Iterable[int] | str | None,
        time_local: str | time | None,
        timezone: str | None,
        start_date: str | date | None,
        interval_weeks: int | None = 1,
        end_date: str | date | None = None,
        occurrence_cap: int | None = None,
        amount: Any = None,
        title: str | None = None,
        active: bool = True,
        id: int | None = None,
    ) -> "RecurringRule":
        """Validate loose input once; every failing field is reported together."""
        errors: Dict[str, str] = {}

        days = _coerce_weekdays(weekdays, errors)

        parsed_time = None
        if time_local is None:
            errors["time_local"] = "time_local is required"
        else:
            try:
                parsed_time = parse_local_time(time_local, "time_local")
            except ValidationError as e:
                errors.update(e.errors)

        try:
            get_zone(timezone)
        except ValidationError as e:
            errors.update(e.errors)

        parsed_start = None
        if start_date is None:
            errors["start_date"] = "start_date is required"
        else:
            try:
                parsed_start = parse_local_date(start_date, "start_date")
            except ValidationError as e:
                errors.update(e.errors)

        parsed_end = None
        if end_date is not None and end_date != "":
            try:
                parsed_end = parse_local_date(end_date, "end_date")
            except ValidationError as e:
                errors.update(e.errors)
        if parsed_start and parsed_end and parsed_end < parsed_start:
            errors["end_date"] = "end_date must be on or after start_date"

        interval = interval_weeks if interval_weeks is not None else 1
        if not isinstance(interval, int) or isinstance(interval, bool) or interval < 1:
            errors["interval_weeks"] = "interval_weeks must be an integer >= 1"

        if occurrence_cap is not None and (not isinstance(occurrence_cap, int) or occurrence_cap < 1):
            errors["occurrence_cap"] = "occurrence_cap must be >= 1 when set"

        parsed_amount = None
        if amount is not None and amount != "":
            try:
                parsed_amount = Decimal(str(amount).replace(",", "."))
            except InvalidOperation:
                errors["amount"] = f"invalid amount: {amount}"
            else:
                if parsed_amount < 0:
                    errors["amount"] = "amount must be >= 0"

        if client_id is None:
            errors["client_id"] = "client_id is required"

        if errors:
            raise ValidationError(errors)

        return cls(
            id=id,
            account_id=account_id,
            client_id=client_id,
            weekdays=days,
            time_local=parsed_time,
            timezone=timezone,
            interval_weeks=interval,
            start_date=parsed_start,
            end_date=parsed_end,
            occurrence_cap=occurrence_cap,
            amount=parsed_amount,
            title=(title or "").strip() or None,
            active=active,
        )

    def update(self, **changes) -> "RecurringRule":
        """Return a re-validated copy with the editable fields in ``changes`` applied."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError({k: "field is not editable" for k in sorted(unknown)})
        current = {name: getattr(self, name) for name in EDITABLE_FIELDS}
        current.update(changes)
        return RecurringRule.create(
            id=self.id, account_id=self.account_id, active=self.active, **current
        )

    def spec(self) -> RuleSpec:
        return RuleSpec(
            weekdays=self.weekdays,
            interval_weeks=self.interval_weeks,
            start_date=self.start_date,
            end_date=self.end_date,
            occurrence_cap=self.occurrence_cap,
        )

    def to_row_values(self) -> Dict[str, Any]:
        """Column values for RecurringRuleModel."""
        return {
            "account_id": self.account_id,
            "client_id": self.client_id,
            "title": self.title,
            "weekdays": format_weekdays(self.weekdays),
            "time_local": self.time_local,
            "timezone": self.timezone,
            "interval_weeks": self.interval_weeks,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "occurrence_cap": self.occurrence_cap,
            "amount": self.amount,
            "active": self.active,
        }

    @classmethod
    def from_row(cls, row) -> "RecurringRule":
        """Rebuild from a stored row, re-running validation."""
        return cls.create(
            id=row.id,
            account_id=row.account_id,
            client_id=row.client_id,
            weekdays=row.weekdays,
            time_local=row.time_local,
            timezone=row.timezone,
            start_date=row.start_date,
            interval_weeks=row.interval_weeks,
            end_date=row.end_date,
            occurrence_cap=row.occurrence_cap,
            amount=row.amount,
            title=row.title,
            active=row.active,
        )


def _coerce_weekdays(weekdays, errors: Dict[str, str]) -> FrozenSet[int]:
    if weekdays is None:
        errors["weekdays"] = "weekdays must not be empty"
        return frozenset()
    try:
        if isinstance(weekdays, str):
            days = parse_weekdays(weekdays)
        else:
            days = normalize_weekdays(weekdays)
    except (TypeError, ValueError) as e:
        errors["weekdays"] = f"invalid weekdays: {weekdays} ({e})"
        return frozenset()
    if not days:
        errors["weekdays"] = "weekdays must contain at least one day in 0..6"
    return days
