"""
Tests for appointment status and payload sanitization
"""
from datetime import date, datetime, time, timedelta, timezone

from agenda.domain.appointment import (
    Appointment, effective_status, effective_end,
    sanitize_appointment_create, sanitize_appointment_update,
    STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_CANCELLED,
)

START = datetime(2025, 1, 6, 22, 0, tzinfo=timezone.utc)


def _appt(status=STATUS_SCHEDULED, end_at=None):
    return Appointment(
        id=1, account_id=1, start_at=START, end_at=end_at,
        occurrence_date=date(2025, 1, 6), time_local=time(19, 0),
        timezone="America/Sao_Paulo", status=status,
    )


def test_effective_end_defaults_to_one_hour():
    assert effective_end(START, None) == START + timedelta(hours=1)
    assert effective_end(START, START + timedelta(minutes=30)) == START + timedelta(minutes=30)


def test_scheduled_in_future_stays_scheduled():
    assert effective_status(_appt(), START - timedelta(minutes=1)) == STATUS_SCHEDULED


def test_scheduled_still_running_stays_scheduled():
    assert effective_status(_appt(), START + timedelta(minutes=59)) == STATUS_SCHEDULED


def test_scheduled_past_end_reads_as_completed():
    assert effective_status(_appt(), START + timedelta(hours=1)) == STATUS_COMPLETED


def test_explicit_end_is_used():
    appt = _appt(end_at=START + timedelta(minutes=30))
    assert effective_status(appt, START + timedelta(minutes=31)) == STATUS_COMPLETED


def test_cancelled_is_never_promoted():
    assert effective_status(_appt(STATUS_CANCELLED), START + timedelta(days=3)) == STATUS_CANCELLED


def test_create_payload_prefers_legacy_key():
    out = sanitize_appointment_create({"rule_id": 7, "recurring_rule_id": 3, "notes": "x"})
    assert out == {"recurring_rule_id": 7, "notes": "x"}


def test_create_payload_keeps_canonical_key():
    assert sanitize_appointment_create({"recurring_rule_id": 3}) == {"recurring_rule_id": 3}


def test_create_payload_without_link_is_one_off():
    out = sanitize_appointment_create({"notes": "walk-in"})
    assert out == {"notes": "walk-in", "recurring_rule_id": None}


def test_create_does_not_mutate_input():
    payload = {"rule_id": 7}
    sanitize_appointment_create(payload)
    assert payload == {"rule_id": 7}


def test_update_without_link_leaves_payload_alone():
    assert sanitize_appointment_update({"notes": "late"}) == {"notes": "late"}


def test_update_legacy_key_renamed():
    assert sanitize_appointment_update({"rule_id": 9}) == {"recurring_rule_id": 9}


def test_update_can_clear_link():
    assert sanitize_appointment_update({"recurring_rule_id": None}) == {"recurring_rule_id": None}


def test_duration_applies_when_no_end_is_stored():
    now = START + timedelta(minutes=45)
    assert effective_status(_appt(), now, timedelta(minutes=30)) == STATUS_COMPLETED
    assert effective_status(_appt(), now, timedelta(minutes=60)) == STATUS_SCHEDULED
