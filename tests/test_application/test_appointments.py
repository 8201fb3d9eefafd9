"""
Tests for one-off appointment create / update / list
"""
import pytest
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from agenda.config import Settings
from agenda.errors import AuthorizationError, ValidationError
from agenda.domain.appointment import Appointment, STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_CANCELLED
from agenda.domain.timezones import as_utc
from agenda.infrastructure.db.models import AppointmentModel
from agenda.application.appointments import (
    CreateAppointmentUseCase, UpdateAppointmentUseCase, list_appointments,
)
from agenda.application.materializer import MaterializeRecurringUseCase

ACCOUNT = 1


def _payload(**overrides):
    payload = {"occurrence_date": "2025-01-06", "time_local": "19:00", "client_name": "Walk-in"}
    payload.update(overrides)
    return payload


def test_create_one_off(db_session, settings):
    appt_id = CreateAppointmentUseCase(db_session, settings).execute(ACCOUNT, _payload(amount="75,50"))

    row = db_session.get(AppointmentModel, appt_id)
    assert row.recurring_rule_id is None
    assert row.timezone == "America/Sao_Paulo"
    assert as_utc(row.start_at) == datetime(2025, 1, 6, 22, 0, tzinfo=timezone.utc)
    assert as_utc(row.end_at) == datetime(2025, 1, 6, 23, 0, tzinfo=timezone.utc)
    assert row.amount == Decimal("75.50")
    assert row.status == STATUS_SCHEDULED


def test_create_with_legacy_rule_key(db_session, settings, client_c, make_rule):
    rule = make_rule(client_c.id)

    appt_id = CreateAppointmentUseCase(db_session, settings).execute(
        ACCOUNT, _payload(rule_id=rule.id, recurring_rule_id=None, client_id=client_c.id, client_name=None)
    )

    row = db_session.get(AppointmentModel, appt_id)
    assert row.recurring_rule_id == rule.id
    assert row.client_name == "Carla"


def test_create_duplicate_occurrence_for_rule_rejected(db_session, settings, client_c, make_rule):
    rule = make_rule(client_c.id)
    use_case = CreateAppointmentUseCase(db_session, settings)
    use_case.execute(ACCOUNT, _payload(recurring_rule_id=rule.id))

    with pytest.raises(ValidationError) as exc:
        use_case.execute(ACCOUNT, _payload(recurring_rule_id=rule.id, time_local="08:00"))
    assert "occurrence_date" in exc.value.errors


def test_create_with_foreign_rule_rejected(db_session, settings):
    with pytest.raises(AuthorizationError):
        CreateAppointmentUseCase(db_session, settings).execute(ACCOUNT, _payload(rule_id=31337))


@pytest.mark.parametrize("overrides,field", [
    ({"time_local": "7pm"}, "time_local"),
    ({"time_local": None}, "time_local"),
    ({"occurrence_date": None}, "occurrence_date"),
    ({"timezone": "Atlantis/Capital"}, "timezone"),
    ({"status": "maybe"}, "status"),
    ({"amount": "-3"}, "amount"),
    ({"duration_minutes": 0}, "duration_minutes"),
])
def test_create_invalid_payload(db_session, settings, overrides, field):
    with pytest.raises(ValidationError) as exc:
        CreateAppointmentUseCase(db_session, settings).execute(ACCOUNT, _payload(**overrides))
    assert field in exc.value.errors
    assert db_session.query(AppointmentModel).count() == 0


def test_update_reschedules_and_keeps_duration(db_session, settings):
    appt_id = CreateAppointmentUseCase(db_session, settings).execute(ACCOUNT, _payload(duration_minutes=90))

    UpdateAppointmentUseCase(db_session, settings).execute(ACCOUNT, appt_id, {"time_local": "10:00", "notes": "moved"})

    row = db_session.get(AppointmentModel, appt_id)
    assert row.time_local == time(10, 0)
    assert as_utc(row.start_at) == datetime(2025, 1, 6, 13, 0, tzinfo=timezone.utc)
    assert as_utc(row.end_at) - as_utc(row.start_at) == timedelta(minutes=90)
    assert row.notes == "moved"


def test_update_without_rule_key_keeps_link(db_session, settings, client_c, make_rule):
    rule = make_rule(client_c.id)
    appt_id = CreateAppointmentUseCase(db_session, settings).execute(ACCOUNT, _payload(recurring_rule_id=rule.id))

    UpdateAppointmentUseCase(db_session, settings).execute(ACCOUNT, appt_id, {"status": STATUS_CANCELLED})

    row = db_session.get(AppointmentModel, appt_id)
    assert row.recurring_rule_id == rule.id
    assert row.status == STATUS_CANCELLED


def test_update_unknown_appointment_rejected(db_session, settings):
    with pytest.raises(AuthorizationError):
        UpdateAppointmentUseCase(db_session, settings).execute(ACCOUNT, 555, {"notes": "x"})


def test_list_reports_effective_status(db_session, settings):
    use_case = CreateAppointmentUseCase(db_session, settings)
    past_id = use_case.execute(ACCOUNT, _payload(occurrence_date="2025-01-06"))
    future_id = use_case.execute(ACCOUNT, _payload(occurrence_date="2025-01-20"))
    now = datetime(2025, 1, 10, tzinfo=timezone.utc)

    items = list_appointments(db_session, ACCOUNT, now=now, settings=settings)

    assert [(i["appointment"].id, i["effective_status"]) for i in items] == [
        (past_id, STATUS_COMPLETED), (future_id, STATUS_SCHEDULED),
    ]
    assert items[0]["appointment"].status == STATUS_SCHEDULED


def test_list_filters_by_date_and_account(db_session, settings):
    use_case = CreateAppointmentUseCase(db_session, settings)
    use_case.execute(ACCOUNT, _payload(occurrence_date="2025-01-06"))
    use_case.execute(ACCOUNT, _payload(occurrence_date="2025-01-20"))
    use_case.execute(2, _payload(occurrence_date="2025-01-07"))

    items = list_appointments(
        db_session, ACCOUNT, date_from=date(2025, 1, 1), date_to=date(2025, 1, 10), settings=settings
    )

    assert [i["appointment"].occurrence_date for i in items] == [date(2025, 1, 6)]


def test_list_returns_domain_appointments(db_session, settings):
    appt_id = CreateAppointmentUseCase(db_session, settings).execute(ACCOUNT, _payload())

    item = list_appointments(db_session, ACCOUNT, now=datetime(2025, 1, 1, tzinfo=timezone.utc), settings=settings)[0]

    assert isinstance(item["appointment"], Appointment)
    assert item["appointment"].id == appt_id
    assert item["appointment"].start_at == datetime(2025, 1, 6, 22, 0, tzinfo=timezone.utc)


def test_list_uses_configured_duration_for_rows_without_end(db_session, settings):
    appt_id = CreateAppointmentUseCase(db_session, settings).execute(ACCOUNT, _payload())
    db_session.get(AppointmentModel, appt_id).end_at = None
    db_session.commit()
    now = datetime(2025, 1, 6, 22, 45, tzinfo=timezone.utc)

    short = Settings(TIMEZONE="America/Sao_Paulo", APPOINTMENT_DURATION_MINUTES=30)
    long = Settings(TIMEZONE="America/Sao_Paulo", APPOINTMENT_DURATION_MINUTES=60)

    assert list_appointments(db_session, ACCOUNT, now=now, settings=short)[0]["effective_status"] == STATUS_COMPLETED
    assert list_appointments(db_session, ACCOUNT, now=now, settings=long)[0]["effective_status"] == STATUS_SCHEDULED


def test_update_without_stored_end_uses_configured_duration(db_session, settings):
    appt_id = CreateAppointmentUseCase(db_session, settings).execute(ACCOUNT, _payload())
    db_session.get(AppointmentModel, appt_id).end_at = None
    db_session.commit()
    short = Settings(TIMEZONE="America/Sao_Paulo", APPOINTMENT_DURATION_MINUTES=30)

    UpdateAppointmentUseCase(db_session, short).execute(ACCOUNT, appt_id, {"time_local": "10:00"})

    row = db_session.get(AppointmentModel, appt_id)
    assert as_utc(row.end_at) - as_utc(row.start_at) == timedelta(minutes=30)


def test_rule_occurrence_date_cannot_move(db_session, settings, client_c, make_rule):
    rule = make_rule(client_c.id)
    MaterializeRecurringUseCase(db_session, settings).execute(ACCOUNT, window_days=14, today=date(2025, 1, 6))
    thursday = (
        db_session.query(AppointmentModel)
        .filter(AppointmentModel.occurrence_date == date(2025, 1, 9))
        .one()
    )

    with pytest.raises(ValidationError) as exc:
        UpdateAppointmentUseCase(db_session, settings).execute(
            ACCOUNT, thursday.id, {"occurrence_date": "2025-01-10"}
        )
    assert "occurrence_date" in exc.value.errors

    again = MaterializeRecurringUseCase(db_session, settings).execute(
        ACCOUNT, window_days=14, today=date(2025, 1, 6)
    )
    assert again.created == 0
    assert db_session.query(AppointmentModel).filter(AppointmentModel.recurring_rule_id == rule.id).count() == 4


def test_rule_occurrence_time_can_move(db_session, settings, client_c, make_rule):
    make_rule(client_c.id)
    MaterializeRecurringUseCase(db_session, settings).execute(ACCOUNT, window_days=7, today=date(2025, 1, 6))
    first = db_session.query(AppointmentModel).order_by(AppointmentModel.occurrence_date).first()

    UpdateAppointmentUseCase(db_session, settings).execute(
        ACCOUNT, first.id, {"occurrence_date": "2025-01-06", "time_local": "08:00"}
    )

    row = db_session.get(AppointmentModel, first.id)
    assert row.occurrence_date == date(2025, 1, 6)
    assert row.time_local == time(8, 0)


def test_one_off_date_can_move(db_session, settings):
    appt_id = CreateAppointmentUseCase(db_session, settings).execute(ACCOUNT, _payload())

    UpdateAppointmentUseCase(db_session, settings).execute(ACCOUNT, appt_id, {"occurrence_date": "2025-01-08"})

    assert db_session.get(AppointmentModel, appt_id).occurrence_date == date(2025, 1, 8)
