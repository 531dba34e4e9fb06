from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from smallsteps.db.base import Base
from smallsteps.db import models  # noqa: F401  ensure models are loaded
from smallsteps.services.store import PlannerStore

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_fk(conn, record):  # pragma: no cover
        cursor = conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield TestingSession
    engine.dispose()


@pytest.fixture
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def store(session):
    return PlannerStore(session)


@pytest.fixture
def seed_goal(store):
    """Create a goal whose tasks hold work units of the given minutes, e.g. [[10, 20], [30]]."""
    counter = itertools.count()

    def _seed(title="Goal", units=((30,),), *, target_date=None, lifelong=False, capabilities=None):
        created = NOW - timedelta(days=10) + timedelta(minutes=next(counter))
        capabilities = iter(capabilities or [])
        with store.transaction():
            goal = store.create_goal(title, target_date=target_date, lifelong=lifelong, now=created)
            tasks, work_units = [], []
            for order, minutes_list in enumerate(units):
                task = store.create_task(goal.id, f"{title} task {order}", sum(minutes_list), order=order, now=created)
                tasks.append(task)
                for position, minutes in enumerate(minutes_list):
                    work_units.append(
                        store.create_work_unit(
                            task.id,
                            f"{title} unit {order}.{position}",
                            minutes,
                            position=position,
                            capability_id=next(capabilities, None),
                            now=created,
                        )
                    )
        return goal, tasks, work_units

    return _seed
