"""
Tests for the scheduling API endpoints
"""
import pytest
from datetime import date, timedelta
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from agenda.config import get_settings
from agenda.domain.timezones import today_in
from agenda.main import app
from agenda.api.deps import get_db, get_current_user


@pytest.fixture
def client(db_session, user):
    """Test client signed in as ``user`` and bound to the test session"""
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(db_session):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.text == "ok"


def test_requires_authentication(anonymous_client):
    response = anonymous_client.get("/api/v1/appointments/")
    assert response.status_code == 401


def test_create_and_list_appointment(client):
    response = client.post("/api/v1/appointments/", json={
        "occurrence_date": "2025-01-06", "time_local": "19:00", "client_name": "Walk-in", "amount": "80",
    })
    assert response.status_code == 200
    appt_id = response.json()["id"]

    listing = client.get("/api/v1/appointments/", params={"date_from": "2025-01-01", "date_to": "2025-01-31"})
    assert listing.status_code == 200
    [item] = listing.json()
    assert item["id"] == appt_id
    assert item["time_local"] == "19:00"
    assert item["amount"] == "80.00" or item["amount"] == "80"
    assert item["status"] == "scheduled"
    assert item["effective_status"] == "completed"


def test_legacy_rule_key_is_accepted(client, client_c, make_rule):
    rule = make_rule(client_c.id)

    response = client.post("/api/v1/appointments/", json={
        "occurrence_date": "2025-01-07", "time_local": "09:00", "rule_id": rule.id,
    })
    assert response.status_code == 200

    [item] = client.get("/api/v1/appointments/").json()
    assert item["recurring_rule_id"] == rule.id


def test_validation_error_lists_fields(client):
    response = client.post("/api/v1/appointments/", json={"occurrence_date": "2025-01-06", "time_local": "7pm"})
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "validation"
    assert "time_local" in body["fields"]


def test_unknown_rule_is_not_found(client):
    response = client.post("/api/v1/recurring-rules/999/deactivate")
    assert response.status_code == 404


def test_conflicts_endpoint(client):
    appt_id = client.post("/api/v1/appointments/", json={
        "occurrence_date": "2025-01-06", "time_local": "19:00", "timezone": "America/Sao_Paulo",
    }).json()["id"]

    params = {"occurrence_date": "2025-01-06", "time_local": "19:30", "timezone": "America/Sao_Paulo"}
    response = client.get("/api/v1/appointments/conflicts", params=params)
    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == [appt_id]

    response = client.get("/api/v1/appointments/conflicts", params={**params, "exclude_id": appt_id})
    assert response.json() == []


def test_sweep_endpoint(client):
    client.post("/api/v1/appointments/", json={"occurrence_date": "2025-01-06", "time_local": "19:00"})

    assert client.post("/api/v1/appointments/sweep").json() == {"updated": 1}
    assert client.post("/api/v1/appointments/sweep").json() == {"updated": 0}


def test_rule_lifecycle(client, client_c):
    start = date.today() - timedelta(days=7)
    response = client.post("/api/v1/recurring-rules/", json={
        "client_id": client_c.id, "weekdays": [0, 1, 2, 3, 4, 5, 6], "time_local": "19:00",
        "timezone": "America/Sao_Paulo", "start_date": start.isoformat(), "amount": "50",
    })
    assert response.status_code == 200
    body = response.json()
    rule_id = body["rule_id"]
    created = body["materialize"]["created"]
    assert created > 0
    assert body["projections"]["finance_created"] == created

    again = client.post("/api/v1/recurring-rules/materialize", json={"rule_id": rule_id})
    assert again.status_code == 200
    assert again.json()["created"] == 0

    deactivated = client.post(f"/api/v1/recurring-rules/{rule_id}/deactivate").json()
    assert deactivated["pruned"]["appointments_removed"] == created


def test_create_rule_with_bad_fields(client, client_c):
    response = client.post("/api/v1/recurring-rules/", json={
        "client_id": client_c.id, "weekdays": [], "time_local": "19:00",
        "timezone": "America/Sao_Paulo", "start_date": "2025-01-06",
    })
    assert response.status_code == 422
    assert "weekdays" in response.json()["fields"]


def test_materialize_rejects_zero_window(client):
    response = client.post("/api/v1/recurring-rules/materialize", json={"window_days": 0})
    assert response.status_code == 422


def test_finance_endpoints(client):
    derived = client.post("/api/v1/finance/projections/derive")
    assert derived.status_code == 200
    assert derived.json()["rules_considered"] == 0

    reconciled = client.post("/api/v1/finance/reconcile")
    assert reconciled.status_code == 200
    assert reconciled.json() == {"errors": [], "future_removed": 0, "duplicates_removed": 0}


def test_store_outage_is_retryable_503(client, db_session):
    outage = OperationalError("SELECT appointments", {}, Exception("connection refused"))

    with patch.object(db_session, "query", side_effect=outage):
        response = client.get("/api/v1/appointments/")

    assert response.status_code == 503
    body = response.json()
    assert body["error"] == "store_unavailable"
    assert body["retryable"] is True


def test_moving_rule_occurrence_date_is_rejected(client, client_c, make_rule):
    rule = make_rule(client_c.id)
    appt_id = client.post("/api/v1/appointments/", json={
        "occurrence_date": "2025-01-06", "time_local": "19:00", "recurring_rule_id": rule.id,
    }).json()["id"]

    response = client.patch(f"/api/v1/appointments/{appt_id}", json={"occurrence_date": "2025-01-07"})

    assert response.status_code == 422
    assert "occurrence_date" in response.json()["fields"]


def test_financial_source_endpoints(client):
    created = client.post("/api/v1/finance/sources", json={
        "kind": "EXPENSE", "description": "Studio rent", "amount": "1500",
        "start_date": today_in(get_settings().TIMEZONE).isoformat(),
    })
    assert created.status_code == 200
    source_id = created.json()["id"]

    materialized = client.post("/api/v1/finance/sources/materialize", json={"window_days": 1})
    assert materialized.status_code == 200
    assert materialized.json()["created"] == 1

    deactivated = client.post(f"/api/v1/finance/sources/{source_id}/deactivate")
    assert deactivated.json() == {"id": source_id, "active": False}

    reconciled = client.post("/api/v1/finance/reconcile").json()
    assert reconciled["future_removed"] == 1


def test_financial_source_validation(client):
    response = client.post("/api/v1/finance/sources", json={
        "kind": "GIFT", "description": "Prize", "amount": "10", "start_date": "2025-01-06",
    })
    assert response.status_code == 422
    assert "kind" in response.json()["fields"]
