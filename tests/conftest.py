"""
Pytest fixtures for testing
"""
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from agenda.config import Settings
from agenda.infrastructure.db.session import Base
from agenda.infrastructure.db.models import ClientModel, ServicePackageModel, User
from agenda.infrastructure.db.repository import SchedulingRepository
from agenda.domain.recurring_rule import RecurringRule


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient runs in a worker thread)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def sample_account_id():
    """Sample account ID for tests"""
    return 1


@pytest.fixture
def settings():
    return Settings(
        TIMEZONE="America/Sao_Paulo",
        MATERIALIZE_WINDOW_DAYS=84,
        APPOINTMENT_DURATION_MINUTES=60,
    )


@pytest.fixture
def user(db_session, sample_account_id):
    u = User(id=sample_account_id, email="owner@example.com")
    db_session.add(u)
    db_session.commit()
    return u


@pytest.fixture
def package(db_session, sample_account_id):
    p = ServicePackageModel(account_id=sample_account_id, title="Pacote mensal", price=Decimal("120.00"))
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture
def client_c(db_session, sample_account_id):
    """Client without a package."""
    c = ClientModel(account_id=sample_account_id, name="Carla", is_recurring=True)
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture
def packaged_client(db_session, sample_account_id, package):
    c = ClientModel(account_id=sample_account_id, name="Paulo", package_id=package.id, is_recurring=True)
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture
def make_rule(db_session, sample_account_id):
    """Persist a validated recurring rule and return its row."""
    def _make(client_id, **overrides):
        fields = dict(
            account_id=sample_account_id, client_id=client_id, weekdays=[1, 4],
            time_local="19:00", timezone="America/Sao_Paulo", start_date="2025-01-06",
        )
        fields.update(overrides)
        row = SchedulingRepository(db_session).add_rule(RecurringRule.create(**fields).to_row_values())
        db_session.commit()
        return row

    return _make
