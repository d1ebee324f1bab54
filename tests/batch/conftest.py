"""
Fixtures for audit_batch tests.

In-memory SQLite with the real ORM models and a naive DeterministicClock
(SQLite drops tzinfo on round-trip).
"""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import audit_batch.models  # noqa: F401  (registers tables on Base.metadata)
from audit_kernel.db.base import Base
from audit_kernel.domain.clock import DeterministicClock

from audit_batch.services.checkpoint_store import JobStateRepository, SqlCheckpointStore
from audit_batch.services.controller import AuditJobController, ControllerSettings
from audit_batch.services.result_sink import SqlResultSink
from audit_batch.services.scheduler import SqlContinuationScheduler
from audit_batch.services.status import BestEffortStatusReporter, SqlStatusReporter

from tests.batch.fakes import T0


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return DeterministicClock(T0)


@pytest.fixture
def checkpoint_store(session_factory):
    return SqlCheckpointStore(session_factory)


@pytest.fixture
def repository(checkpoint_store):
    return JobStateRepository(checkpoint_store)


@pytest.fixture
def scheduler(session_factory, clock):
    return SqlContinuationScheduler(session_factory, clock)


@pytest.fixture
def sink(session_factory):
    return SqlResultSink(session_factory)


@pytest.fixture
def status_reporter(session_factory, clock):
    return BestEffortStatusReporter(SqlStatusReporter(session_factory, clock))


@pytest.fixture
def make_controller(repository, scheduler, sink, status_reporter, clock):
    """Factory: ``make_controller(data_source, **settings)``."""

    def _make(data_source, scheduler_override=None, **settings) -> AuditJobController:
        return AuditJobController(
            repository=repository,
            scheduler=scheduler_override or scheduler,
            data_source=data_source,
            sink=sink,
            status_reporter=status_reporter,
            clock=clock,
            settings=ControllerSettings(**settings),
        )

    return _make
