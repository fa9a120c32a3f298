"""Celery tasks for the approval check.

Provides:
- A periodic (beat) approval check at the configured interval
- An on-demand approval check

Each worker process runs one check at a time; the database check lease
excludes overlapping checks from other workers and from the API.
"""

from typing import Any, Dict, Optional
import logging

from celery import Celery, shared_task

from mailgate.common.logger import configure_from_settings
from mailgate.core.approval.engine import ApprovalWorkflowEngine, RunTrigger
from mailgate.core.config import get_settings
from mailgate.core.exceptions import AlreadyRunningError

logger = logging.getLogger(__name__)
settings = get_settings()
configure_from_settings(settings)

celery_app = Celery(
    'mailgate',
    broker=settings.celery_broker_url,
    backend=settings.celery_broker_url,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_default_queue='default',
    worker_concurrency=1,
    beat_schedule={
        'check-approval-replies': {
            'task': 'mailgate.workers.approval_tasks.check_approval_replies',
            'schedule': float(settings.poll_interval_seconds),
            'kwargs': {'trigger': RunTrigger.SCHEDULED.value},
        },
    },
)

_engine: Optional[ApprovalWorkflowEngine] = None


def get_engine() -> ApprovalWorkflowEngine:
    """Process-wide engine, built on first use."""
    global _engine
    if _engine is None:
        from mailgate.bootstrap import build_engine
        from mailgate.db.session import get_session_factory

        _engine = build_engine(settings, get_session_factory())
    return _engine


@shared_task(name='mailgate.workers.approval_tasks.check_approval_replies')
def check_approval_replies(trigger: str = RunTrigger.SCHEDULED.value) -> Dict[str, Any]:
    """
    Run one approval check.

    Args:
        trigger: "scheduled" or "manual"

    Returns:
        Run summary dictionary, or a skipped marker if a check is in progress
    """
    engine = get_engine()
    try:
        summary = engine.run_check(RunTrigger(trigger))
    except AlreadyRunningError:
        logger.info("Skipping approval check: previous check still running")
        return {"skipped": True, "message": "An approval check is already running"}

    if engine.on_summary is not None:
        engine.on_summary(summary)
    return summary.to_dict()
