"""
Pytest configuration and shared fixtures.

Database fixtures use an in-memory SQLite database shared through a
StaticPool, so every session in a test sees the same data.
"""

import itertools
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from database.connection import create_test_provider
from database.models import Base, Case, CaseStatus, Client, User

BASE_TIME = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def config(tmp_path) -> ConfigManager:
    """Configuration with all defaults (no config file)."""
    return ConfigManager(str(tmp_path / "missing.yaml"))


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine):
    """Session provider bound to the SQLite engine."""
    provider = create_test_provider(engine=engine)
    yield provider
    provider.close()


@pytest.fixture
def session(db_provider):
    """A plain session for assertions."""
    session = db_provider.session_factory()
    yield session
    session.close()


@pytest.fixture
def client_org(db_provider) -> Client:
    with db_provider.session_scope() as session:
        client = Client(name="Acme Verification Services")
        session.add(client)
    return client


@pytest.fixture
def actor(db_provider) -> User:
    """A user from the directory who records decisions."""
    with db_provider.session_scope() as session:
        user = User(name="Priya Menon", username="pmenon")
        session.add(user)
    return user


@pytest.fixture
def make_case(db_provider):
    """Factory inserting a case; `minutes` offsets created_at from BASE_TIME."""
    counter = itertools.count(1)

    def _make(
        applicant_name: str = "Test Applicant",
        applicant_phone: str = None,
        national_id: str = None,
        minutes: int = 0,
        client: Client = None,
        status: str = CaseStatus.PENDING.value,
    ) -> Case:
        with db_provider.session_scope() as session:
            case = Case(
                id=uuid.uuid4(),
                case_number=f"CASE-{next(counter):05d}",
                applicant_name=applicant_name,
                applicant_phone=applicant_phone,
                national_id=national_id,
                status=status,
                client_id=client.id if client else None,
                created_at=BASE_TIME + timedelta(minutes=minutes),
                updated_at=BASE_TIME + timedelta(minutes=minutes),
            )
            session.add(case)
        return case

    return _make
