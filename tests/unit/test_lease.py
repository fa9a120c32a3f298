"""Tests for the shared approval check lease."""

from datetime import timedelta

import pytest

from mailgate.core.approval.lease import CHECK_LEASE_NAME, CheckLease
from mailgate.core.exceptions import StoreUnavailableError
from mailgate.db.models import RunLease
from mailgate.db.session import make_engine, make_session_factory

from tests.factories import load


def _lease(session_factory, clock, holder):
    return CheckLease(session_factory, ttl=timedelta(minutes=15), clock=clock, holder=holder)


class TestCheckLease:
    """Tests for acquiring and releasing the lease."""

    def test_first_acquire_creates_row(self, session_factory, clock):
        lease = _lease(session_factory, clock, "worker")

        assert lease.acquire()

        row = load(session_factory, RunLease, CHECK_LEASE_NAME)
        assert row.holder == "worker"
        assert row.acquired_at == clock.now()
        assert row.expires_at == clock.now() + timedelta(minutes=15)

    def test_held_lease_is_refused(self, session_factory, clock):
        worker = _lease(session_factory, clock, "worker")
        api = _lease(session_factory, clock, "api")
        worker.acquire()

        assert not api.acquire()
        assert load(session_factory, RunLease, CHECK_LEASE_NAME).holder == "worker"

    def test_release_frees_the_lease(self, session_factory, clock):
        worker = _lease(session_factory, clock, "worker")
        api = _lease(session_factory, clock, "api")
        worker.acquire()

        assert worker.release()
        assert api.acquire()

    def test_only_holder_can_release(self, session_factory, clock):
        worker = _lease(session_factory, clock, "worker")
        worker.acquire()

        assert not _lease(session_factory, clock, "api").release()
        assert load(session_factory, RunLease, CHECK_LEASE_NAME).holder == "worker"

    def test_lapsed_lease_can_be_taken_over(self, session_factory, clock):
        """Test a holder that never released blocks others only until expiry."""
        crashed = _lease(session_factory, clock, "crashed")
        api = _lease(session_factory, clock, "api")
        crashed.acquire()
        clock.advance(seconds=15 * 60)

        assert api.acquire()
        assert not crashed.release()
        assert load(session_factory, RunLease, CHECK_LEASE_NAME).holder == "api"

    def test_holder_defaults_to_unique_id(self, session_factory):
        assert CheckLease(session_factory).holder != CheckLease(session_factory).holder


class TestLeaseStoreFailure:

    @pytest.fixture
    def broken_factory(self):
        """Sessions on a database without the lease table."""
        engine = make_engine("sqlite://")
        yield make_session_factory(engine)
        engine.dispose()

    def test_acquire_raises_store_unavailable(self, broken_factory, clock):
        with pytest.raises(StoreUnavailableError) as exc_info:
            _lease(broken_factory, clock, "worker").acquire()
        assert exc_info.value.cause is not None

    def test_release_does_not_raise(self, broken_factory, clock):
        assert not _lease(broken_factory, clock, "worker").release()
