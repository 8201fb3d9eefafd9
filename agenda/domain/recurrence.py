"""
Deterministic weekly occurrence generator.

Uses local calendar dates only; the time of day and timezone are applied
later, when an occurrence is turned into an appointment.

Weekdays are numbered 0=Sunday..6=Saturday. Interval skipping is relative to
the rule's start date, not to calendar week boundaries: a day is eligible
when ``((day - start_date).days // 7) % interval_weeks == 0``.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import FrozenSet, Iterable, Iterator

WEEKDAY_NAMES = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")


@dataclass(frozen=True)
class RuleSpec:
    weekdays: FrozenSet[int]  # 0=Sunday..6=Saturday
    interval_weeks: int
    start_date: date
    end_date: date | None
    occurrence_cap: int | None


def sunday_based_weekday(d: date) -> int:
    """date.weekday() is Monday=0; rules use Sunday=0."""
    return (d.weekday() + 1) % 7


def normalize_weekdays(values: Iterable[int]) -> FrozenSet[int]:
    """Accept 0..6 and the 1..7 convention (7=Sunday).

    Raises:
        ValueError: a value outside 0..7
    """
    out = set()
    for v in values:
        v = int(v)
        if not 0 <= v <= 7:
            raise ValueError(f"weekday out of range: {v}")
        out.add(0 if v == 7 else v)
    return frozenset(out)


def parse_weekdays(s: str | None) -> FrozenSet[int]:
    """Parse stored CSV ("1,4") or day names ("MO,TH") into a weekday set."""
    if not s or not s.strip():
        return frozenset()
    values = []
    for part in s.strip().upper().split(","):
        part = part.strip()
        if not part:
            continue
        if part in WEEKDAY_NAMES:
            values.append(WEEKDAY_NAMES.index(part))
        else:
            values.append(int(part))
    return normalize_weekdays(values)


def format_weekdays(weekdays: Iterable[int]) -> str:
    return ",".join(str(d) for d in sorted(set(weekdays)))


def _validate_rule(rule: RuleSpec) -> None:
    if rule.interval_weeks < 1:
        raise ValueError("interval_weeks must be >= 1")
    if not rule.weekdays:
        raise ValueError("weekdays must not be empty")
    if rule.occurrence_cap is not None and rule.occurrence_cap < 1:
        raise ValueError("occurrence_cap must be >= 1 when set")


def _fires_on(rule: RuleSpec, d: date) -> bool:
    if sunday_based_weekday(d) not in rule.weekdays:
        return False
    weeks_elapsed = (d - rule.start_date).days // 7
    return weeks_elapsed % rule.interval_weeks == 0


def _iter_days(first: date, last: date) -> Iterator[date]:
    d = first
    while d <= last:
        yield d
        d += timedelta(days=1)


def generate_occurrence_dates(
    rule: RuleSpec,
    window_start: date,
    window_end: date,
) -> list[date]:
    """Generate occurrence dates in [window_start, window_end] (inclusive).
    Deterministic, sorted ascending. An inverted window yields []."""
    _validate_rule(rule)

    last = window_end if rule.end_date is None else min(rule.end_date, window_end)
    if window_start > last or rule.start_date > last:
        return []

    # The cap counts every firing since start_date, so without a cap the scan
    # can begin at the window; with one it must replay the rule from the start.
    if rule.occurrence_cap is None:
        first = max(rule.start_date, window_start)
    else:
        first = rule.start_date

    out: list[date] = []
    fired = 0
    for d in _iter_days(first, last):
        if not _fires_on(rule, d):
            continue
        fired += 1
        if rule.occurrence_cap is not None and fired > rule.occurrence_cap:
            break
        if d >= window_start:
            out.append(d)
    return out


# --- Helpers for converting DB rows to RuleSpec ---

def rule_spec_from_db(row) -> RuleSpec:
    """Build RuleSpec from a RecurringRuleModel row (any object with matching attributes)."""
    weekdays = row.weekdays
    if isinstance(weekdays, str) or weekdays is None:
        weekdays = parse_weekdays(weekdays)
    return RuleSpec(
        weekdays=frozenset(weekdays),
        interval_weeks=row.interval_weeks,
        start_date=row.start_date,
        end_date=row.end_date,
        occurrence_cap=row.occurrence_cap,
    )
