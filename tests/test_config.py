"""
Tests for application settings
"""
import pytest
from pydantic import ValidationError as SettingsError

from agenda.config import Settings


def test_defaults():
    settings = Settings()
    assert settings.MATERIALIZE_WINDOW_DAYS == 84
    assert settings.APPOINTMENT_DURATION_MINUTES == 60


def test_postgres_url_uses_psycopg_driver():
    settings = Settings(DATABASE_URL="postgresql://u:p@db:5432/agenda")
    assert settings.get_sqlalchemy_url() == "postgresql+psycopg://u:p@db:5432/agenda"
    assert Settings(DATABASE_URL="sqlite://").get_sqlalchemy_url() == "sqlite://"


def test_unknown_timezone_rejected():
    with pytest.raises(SettingsError):
        Settings(TIMEZONE="Mars/Olympus")


def test_window_must_be_positive():
    with pytest.raises(SettingsError):
        Settings(MATERIALIZE_WINDOW_DAYS=0)
