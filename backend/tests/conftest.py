"""
Shared fixtures: an in-memory SQLite database with one user per role.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CACHE_SWEEP_ENABLED", "false")

import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.cache import ReadThroughCache
from app.database import Base
from app.models.db_models import UserDB, UserRole
from app.services.actor import Actor


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def days_from_now(days: float) -> datetime:
    return NOW + timedelta(days=days)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def fresh_cache():
    return ReadThroughCache()


@pytest.fixture
def users(db):
    """operator, agent, student (referred by agent), lone_student, super workers, workers."""
    people = {
        "operator": UserDB(id="op-1", name="Olivia Operator", email="ops@example.com", role=UserRole.SUPER_AGENT),
        "agent": UserDB(id="ag-1", name="Arjun Agent", email="agent@example.com", role=UserRole.AGENT),
        "super_worker": UserDB(id="sw-1", name="Sam Senior", email="sw1@example.com", role=UserRole.SUPER_WORKER),
        "super_worker_2": UserDB(id="sw-2", name="Sid Senior", email="sw2@example.com", role=UserRole.SUPER_WORKER),
        "worker": UserDB(id="wk-1", name="Wren Writer", email="wk1@example.com", role=UserRole.WORKER),
        "worker_2": UserDB(id="wk-2", name="Wade Writer", email="wk2@example.com", role=UserRole.WORKER),
    }
    db.add_all(people.values())
    db.flush()
    people["student"] = UserDB(id="st-1", name="Stella Student", email="st1@example.com",
                               role=UserRole.STUDENT, referred_by="ag-1")
    people["lone_student"] = UserDB(id="st-2", name="Lou Student", email="st2@example.com",
                                    role=UserRole.STUDENT)
    db.add_all([people["student"], people["lone_student"]])
    db.commit()
    return people


@pytest.fixture
def actors(users):
    return {key: Actor.from_user(user) for key, user in users.items()}


@pytest.fixture
def workflow(db, fresh_cache):
    from app.services.workflow import OrderWorkflowService
    return OrderWorkflowService(db, cache=fresh_cache, clock=lambda: NOW)
