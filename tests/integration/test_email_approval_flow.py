"""End-to-end approval flows: request e-mail out, reply in, document decided.

Runs against a SQLite file database with an in-memory mailbox; the threaded
tests exercise the conditional updates under real lock contention.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from mailgate.bootstrap import notify_applied
from mailgate.core.approval.applier import ApplyStatus
from mailgate.core.approval.parser import ParsedDecision
from mailgate.core.approval.states import AuditAction, Outcome
from mailgate.core.exceptions import AlreadyRunningError, MailboxUnavailableError
from mailgate.db.models import ApprovalToken

from tests.factories import audit_entries, build_reply, load
from tests.fakes import BlockingTransport

pytestmark = pytest.mark.integration


def _reply_to_request(notifier, body, *, uid=None, message_id=None):
    """Reply to the latest request e-mail the way a mail client would."""
    document, token, _ = notifier.requests[-1]
    return build_reply(
        token.id,
        f"{body}\n\nOn Mon, 1 Jan 2024 at 12:00, MailGate wrote:\n> Approval-Token: {token.id}\n",
        subject=f"Re: [MG-APPROVAL:{token.id}] Approval request: {document.title}",
        uid=uid,
        message_id=message_id,
    )


class TestApproveByEmail:
    """Approver answers the request e-mail."""

    def test_full_cycle(self, service, engine, transport, notifier, session_factory, clock):
        document = service.create_document("Q3 Budget", author_email="author@example.com")
        service.request_approval(document.id, "approver@x.com", actor="alice")
        clock.advance(hours=1)
        transport.deliver(_reply_to_request(notifier, "Approved, thanks.", uid="100"))

        summary = engine.run_check()
        notify_applied(service, summary)

        assert summary.processed_count == 1
        assert summary.error_count == 0
        assert service.get_document(document.id).status == "approved"
        assert service.list_pending_tokens(document.id) == []
        assert "100" in transport.seen

        actions = [e.action for e in audit_entries(session_factory, document_id=document.id)]
        assert actions == [AuditAction.APPROVAL_PROCESSED.value, AuditAction.APPROVAL_REQUESTED.value]
        assert notifier.notices[0][1:] == ("approved", "approver@x.com")

    def test_rejection_then_resubmission(self, service, engine, transport, notifier):
        document = service.create_document("Policy")
        service.request_approval(document.id, "approver@x.com")
        transport.deliver(_reply_to_request(notifier, "Rejected - numbers are off"))
        engine.run_check()
        assert service.get_document(document.id).status == "rejected"

        service.request_approval(document.id, "approver@x.com")
        transport.deliver(_reply_to_request(notifier, "Accepted"))
        summary = engine.run_check()

        assert summary.processed_count == 1
        assert service.get_document(document.id).status == "approved"

    def test_duplicate_copies_apply_once(self, service, engine, transport, notifier, session_factory):
        """Test the same reply delivered twice moves the document exactly once."""
        document = service.create_document("Policy")
        token = service.request_approval(document.id, "approver@x.com")
        transport.deliver(_reply_to_request(notifier, "Approve", uid="1", message_id="<same@x.com>"))
        transport.deliver(_reply_to_request(notifier, "Approve", uid="2", message_id="<same@x.com>"))

        summary = engine.run_check()

        assert summary.processed_count == 1
        assert summary.already_consumed_count == 1
        assert summary.error_count == 0
        assert transport.seen == {"1", "2"}
        assert load(session_factory, ApprovalToken, token.id).source_message_id == "<same@x.com>"
        processed = audit_entries(
            session_factory, document_id=document.id, action=AuditAction.APPROVAL_PROCESSED.value
        )
        assert len(processed) == 1

    def test_late_reply_after_manual_resolution(self, service, engine, transport, notifier):
        document = service.create_document("Policy")
        token = service.request_approval(document.id, "approver@x.com")
        service.resolve_manually(token.id, Outcome.REJECT, actor="boss")
        transport.deliver(_reply_to_request(notifier, "Approved"))

        summary = engine.run_check()

        assert summary.processed_count == 0
        assert summary.already_consumed_count == 1
        assert service.get_document(document.id).status == "rejected"

    def test_two_approvers_first_decision_wins(self, service, engine, transport, notifier, session_factory):
        document = service.create_document("Policy")
        service.request_approval(document.id, "a@x.com")
        first = _reply_to_request(notifier, "Rejected")
        service.request_approval(document.id, "b@x.com")
        second = _reply_to_request(notifier, "Approved")
        transport.deliver(first)
        transport.deliver(second)

        summary = engine.run_check()

        assert summary.processed_count == 1
        assert summary.error_count == 1
        assert service.get_document(document.id).status == "rejected"
        assert service.list_pending_tokens(document.id) == []
        assert audit_entries(session_factory, document_id=document.id, action=AuditAction.ERROR.value) == []

    def test_stale_reply_does_not_decide_resubmission(self, service, engine, transport, notifier):
        """Test a reply to an earlier round is ignored once the document is resubmitted."""
        document = service.create_document("Policy")
        service.request_approval(document.id, "a@x.com")
        rejection = _reply_to_request(notifier, "Rejected")
        service.request_approval(document.id, "b@x.com")
        stale_approval = _reply_to_request(notifier, "Approved")
        transport.deliver(rejection)
        engine.run_check()

        service.request_approval(document.id, "b@x.com")
        transport.deliver(stale_approval)
        summary = engine.run_check()

        assert summary.processed_count == 0
        assert service.get_document(document.id).status == "pending_approval"
        assert len(service.list_pending_tokens(document.id)) == 1


class TestMailboxFailure:

    def test_unreachable_mailbox_changes_nothing(self, service, engine, transport, notifier, session_factory):
        document = service.create_document("Policy")
        token = service.request_approval(document.id, "approver@x.com")
        transport.deliver(_reply_to_request(notifier, "Approved"))
        transport.connect_error = OSError("connection refused")

        summary = engine.run_check()

        assert summary.mailbox_error is not None
        assert summary.message.startswith("Mailbox unavailable")
        assert service.get_document(document.id).status == "pending_approval"
        assert load(session_factory, ApprovalToken, token.id).status == "pending"
        run_errors = audit_entries(session_factory, action=AuditAction.ERROR.value)
        assert run_errors[0].document_id is None

        transport.connect_error = None
        assert engine.run_check().processed_count == 1


class TestConcurrency:
    """Racing writers against one token."""

    def test_concurrent_apply_consumes_token_once(self, service, applier, session_factory):
        document = service.create_document("Policy")
        token = service.request_approval(document.id, "approver@x.com")
        outcomes = [Outcome.APPROVE if n % 2 else Outcome.REJECT for n in range(8)]
        start = threading.Barrier(len(outcomes))

        def apply(n):
            start.wait(timeout=10)
            return applier.apply(ParsedDecision(token.id, outcomes[n], f"<race-{n}@x.com>"))

        with ThreadPoolExecutor(max_workers=len(outcomes)) as pool:
            results = list(pool.map(apply, range(len(outcomes))))

        statuses = [r.status for r in results]
        assert statuses.count(ApplyStatus.APPLIED) == 1
        assert statuses.count(ApplyStatus.ALREADY_CONSUMED) == len(outcomes) - 1

        winner = next(r for r in results if r.applied)
        stored = load(session_factory, ApprovalToken, token.id)
        assert service.get_document(document.id).status == winner.new_status
        assert stored.outcome == ("approve" if winner.new_status == "approved" else "reject")

        decided = [
            e for e in audit_entries(session_factory, document_id=document.id)
            if e.action != AuditAction.APPROVAL_REQUESTED.value
        ]
        assert len(decided) == 1

    def test_manual_and_scheduled_checks_do_not_overlap(self, service, applier, session_factory, clock, notifier):
        from mailgate.core.approval.engine import ApprovalWorkflowEngine, RunTrigger
        from mailgate.services.mailbox import MailboxPoller

        document = service.create_document("Policy")
        service.request_approval(document.id, "approver@x.com")
        transport = BlockingTransport([_reply_to_request(notifier, "Approved")])
        engine = ApprovalWorkflowEngine(MailboxPoller(lambda: transport), applier, session_factory, clock=clock)

        with ThreadPoolExecutor(max_workers=1) as pool:
            scheduled = pool.submit(engine.run_check, RunTrigger.SCHEDULED)
            assert transport.entered.wait(timeout=5)
            with pytest.raises(AlreadyRunningError):
                engine.run_check(RunTrigger.MANUAL)
            transport.release.set()
            summary = scheduled.result(timeout=10)

        assert summary.trigger == "scheduled"
        assert summary.processed_count == 1
        assert not engine.is_running


class TestMailboxErrors:

    def test_listing_failure_is_reported(self, engine, transport):
        transport.list_error = MailboxUnavailableError("IMAP SEARCH failed")

        summary = engine.run_check()

        assert summary.error_count == 1
        assert "IMAP SEARCH failed" in summary.mailbox_error
