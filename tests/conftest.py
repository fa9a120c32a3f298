"""Pytest configuration and shared fixtures."""

import pytest

from mailgate.core.approval.applier import DecisionApplier
from mailgate.core.approval.engine import ApprovalWorkflowEngine
from mailgate.core.approval.service import ApprovalService
from mailgate.core.clock import DeterministicClock
from mailgate.core.config import Settings
from mailgate.db.session import init_db, make_engine, make_session_factory
from mailgate.services.mailbox import MailboxPoller

from tests.fakes import FakeTransport, ManualScheduler, RecordingNotifier


@pytest.fixture
def clock():
    """Clock fixed at 2024-01-01 12:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def db_engine(tmp_path):
    """SQLite engine on a file, so several threads can share the database."""
    engine = make_engine(f"sqlite:///{tmp_path / 'mailgate-test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def db_session(session_factory):
    """A session for arranging and inspecting data; the caller commits."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def settings():
    """Settings that ignore the environment and any .env file."""
    return Settings(
        _env_file=None,
        imap_host="imap.example.com",
        imap_user="approvals@example.com",
        imap_password="secret",
        smtp_host="smtp.example.com",
        smtp_from_email="approvals@example.com",
        database_url="sqlite://",
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def poller(transport):
    return MailboxPoller(lambda: transport)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def applier(session_factory, clock):
    return DecisionApplier(session_factory, clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(session_factory, applier, clock, notifier):
    return ApprovalService(session_factory, notifier=notifier, applier=applier, clock=clock)


@pytest.fixture
def engine(poller, applier, session_factory, clock, scheduler):
    return ApprovalWorkflowEngine(
        poller, applier, session_factory, clock=clock, scheduler=scheduler
    )
