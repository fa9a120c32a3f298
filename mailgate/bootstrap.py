"""Wiring of the workflow components from settings."""

from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import sessionmaker

from mailgate.core.approval.applier import DecisionApplier
from mailgate.core.approval.engine import ApprovalWorkflowEngine, RunSummary
from mailgate.core.approval.lease import CheckLease
from mailgate.core.approval.service import ApprovalService
from mailgate.core.clock import Clock, SystemClock
from mailgate.core.config import Settings
from mailgate.services.mailbox import MailboxPoller
from mailgate.services.notifications import NotificationService
from mailgate.workers.scheduler import IntervalScheduler


def build_service(
    settings: Settings,
    session_factory: sessionmaker,
    *,
    clock: Optional[Clock] = None,
    notifier: Optional[NotificationService] = None,
) -> ApprovalService:
    clock = clock or SystemClock()
    ttl = timedelta(hours=settings.token_ttl_hours) if settings.token_ttl_hours else None
    return ApprovalService(
        session_factory,
        notifier=notifier or NotificationService(settings),
        applier=DecisionApplier(session_factory, clock),
        clock=clock,
        token_ttl=ttl,
    )


def build_engine(
    settings: Settings,
    session_factory: sessionmaker,
    *,
    service: Optional[ApprovalService] = None,
    poller: Optional[MailboxPoller] = None,
    scheduler=None,
    clock: Optional[Clock] = None,
) -> ApprovalWorkflowEngine:
    """Engine polling the configured mailbox; decisions notify authors via ``service``.

    Every engine built here shares the database check lease, so the Celery
    worker and the API never run checks at the same time.
    """
    clock = clock or SystemClock()
    service = service or build_service(settings, session_factory, clock=clock)

    def notify_authors(summary: RunSummary) -> None:
        notify_applied(service, summary)

    return ApprovalWorkflowEngine(
        poller or MailboxPoller.from_settings(settings),
        service.applier,
        session_factory,
        clock=clock,
        scheduler=scheduler or IntervalScheduler(settings.poll_interval_seconds),
        on_summary=notify_authors,
        lease=CheckLease(
            session_factory, ttl=timedelta(minutes=settings.check_lease_minutes), clock=clock
        ),
    )


def notify_applied(service: ApprovalService, summary: RunSummary) -> int:
    """Send decision notices for every decision a run applied."""
    sent = 0
    for outcome in summary.outcomes:
        if outcome.result != "applied" or outcome.document_id is None:
            continue
        if service.notify_decision(outcome.document_id, outcome.new_status, outcome.actor or "approver"):
            sent += 1
    return sent
