"""
Tests for projecting fixed / recurring financial sources into expected entries
"""
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from agenda.errors import AuthorizationError, ValidationError
from agenda.domain.financial_entry import STATUS_EXPECTED, KIND_EXPENSE, KIND_INCOME
from agenda.infrastructure.db.models import FinancialEntryModel, FinancialSourceModel
from agenda.infrastructure.db.repository import SchedulingRepository
from agenda.application.financial_sources import (
    CreateFinancialSourceUseCase, DeactivateFinancialSourceUseCase, MaterializeFinancialSourcesUseCase,
)

ACCOUNT = 1
MONDAY = date(2025, 1, 6)


def _create(db, **overrides):
    fields = dict(kind="EXPENSE", description="Studio rent", amount="1500", start_date="2025-01-10")
    fields.update(overrides)
    return CreateFinancialSourceUseCase(db).execute(ACCOUNT, **fields)


def _entries(db):
    return db.query(FinancialEntryModel).order_by(FinancialEntryModel.due_date).all()


def test_create_persists_validated_source(db_session):
    source_id = _create(db_session, kind="expense", description="  Studio rent  ")

    row = db_session.get(FinancialSourceModel, source_id)
    assert row.kind == KIND_EXPENSE
    assert row.description == "Studio rent"
    assert row.active is True


def test_create_invalid_source_persists_nothing(db_session):
    with pytest.raises(ValidationError):
        _create(db_session, amount="lots")
    assert db_session.query(FinancialSourceModel).count() == 0


def test_materialize_creates_expected_entries(db_session, settings):
    _create(db_session)

    result = MaterializeFinancialSourcesUseCase(db_session, settings).execute(ACCOUNT, window_days=90, today=MONDAY)

    assert result.created == 3
    assert result.sources_considered == 1
    assert result.window_days == 90
    entries = _entries(db_session)
    assert [e.due_date for e in entries] == [date(2025, 1, 10), date(2025, 2, 10), date(2025, 3, 10)]
    for e in entries:
        assert e.appointment_id is None
        assert e.status == STATUS_EXPECTED
        assert e.kind == KIND_EXPENSE
        assert e.amount == Decimal("1500")
        assert e.note == "Fixed: Studio rent"


def test_materialize_is_idempotent(db_session, settings):
    _create(db_session)
    use_case = MaterializeFinancialSourcesUseCase(db_session, settings)
    use_case.execute(ACCOUNT, window_days=90, today=MONDAY)

    again = use_case.execute(ACCOUNT, window_days=90, today=MONDAY)

    assert again.created == 0
    assert again.skipped == 3
    assert len(_entries(db_session)) == 3


def test_default_window_from_settings(db_session, settings):
    _create(db_session, source_type="recurring", frequency="weekly", kind="INCOME", description="Group class")

    result = MaterializeFinancialSourcesUseCase(db_session, settings).execute(ACCOUNT, today=MONDAY)

    assert result.window_days == 180
    # window [2025-01-06, 2025-07-04]; Fridays from 2025-01-10
    assert result.created == 26
    assert {e.kind for e in _entries(db_session)} == {KIND_INCOME}


def test_inactive_source_not_materialized(db_session, settings):
    source_id = _create(db_session)
    DeactivateFinancialSourceUseCase(db_session).execute(ACCOUNT, source_id)

    result = MaterializeFinancialSourcesUseCase(db_session, settings).execute(ACCOUNT, window_days=90, today=MONDAY)

    assert result.sources_considered == 0
    assert _entries(db_session) == []


def test_deactivate_source_of_another_account_rejected(db_session):
    source_id = _create(db_session)
    with pytest.raises(AuthorizationError):
        DeactivateFinancialSourceUseCase(db_session).execute(2, source_id)
    assert db_session.get(FinancialSourceModel, source_id).active is True


def test_non_positive_window_rejected(db_session, settings):
    with pytest.raises(ValidationError) as exc:
        MaterializeFinancialSourcesUseCase(db_session, settings).execute(ACCOUNT, window_days=0, today=MONDAY)
    assert "window_days" in exc.value.errors


def test_failed_entry_is_reported_and_the_rest_still_created(db_session, settings):
    _create(db_session)
    original = SchedulingRepository.add_financial_entry

    def failing_in_february(repo, values):
        if values["due_date"] == date(2025, 2, 10):
            raise IntegrityError("INSERT INTO financial_entries", {}, Exception("constraint failed"))
        return original(repo, values)

    with patch.object(SchedulingRepository, "add_financial_entry", failing_in_february):
        result = MaterializeFinancialSourcesUseCase(db_session, settings).execute(
            ACCOUNT, window_days=90, today=MONDAY
        )

    assert result.created == 2
    assert len(result.errors) == 1
    assert "2025-02-10" in result.errors[0]
    assert [e.due_date for e in _entries(db_session)] == [date(2025, 1, 10), date(2025, 3, 10)]
