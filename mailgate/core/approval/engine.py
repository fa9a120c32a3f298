"""Approval workflow engine.

One run: Idle → Polling → Parsing ⇄ Applying → Idle. Only one run may be in
flight per engine; a second caller is turned away with ``AlreadyRunningError``
instead of waiting.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from mailgate.core.approval.applier import ApplyResult, ApplyStatus, DecisionApplier
from mailgate.core.approval.lease import CheckLease
from mailgate.core.approval.parser import (
    Ignored,
    Malformed,
    ParsedDecision,
    ParseResult,
    RawMessage,
    ReplyParser,
)
from mailgate.core.approval.states import AuditAction
from mailgate.core.clock import Clock, SystemClock
from mailgate.core.exceptions import (
    AlreadyRunningError,
    MailboxUnavailableError,
    StoreUnavailableError,
)
from mailgate.db.models import AuditSeverity
from mailgate.db.store import AuditStore
from mailgate.services.mailbox import MailboxPoller

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    PARSING = "parsing"
    APPLYING = "applying"


class RunTrigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


@dataclass
class MessageOutcome:
    """What happened to one message in a run."""
    uid: str
    message_id: str
    result: str
    token_id: Optional[str] = None
    detail: Optional[str] = None
    document_id: Optional[UUID] = None
    new_status: Optional[str] = None
    actor: Optional[str] = None


@dataclass
class RunSummary:
    """Aggregated result of one approval check."""
    trigger: str = RunTrigger.MANUAL.value
    processed_count: int = 0
    error_count: int = 0
    already_consumed_count: int = 0
    ignored_count: int = 0
    messages: List[str] = field(default_factory=list)
    outcomes: List[MessageOutcome] = field(default_factory=list)
    mailbox_error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def message(self) -> str:
        """One-line result for simple callers."""
        if self.mailbox_error:
            return f"Mailbox unavailable: {self.mailbox_error}"
        if self.processed_count:
            text = f"{self.processed_count} approval(s) processed."
        else:
            text = "No new approval replies."
        if self.error_count:
            text += f" {self.error_count} error(s)."
        return text

    def add_outcome(self, message: RawMessage, result: str, **fields) -> None:
        self.outcomes.append(
            MessageOutcome(uid=message.uid, message_id=message.message_id, result=result, **fields)
        )

    def add_error(self, text: str) -> None:
        self.error_count += 1
        self.messages.append(text)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["message"] = self.message
        for outcome in data["outcomes"]:
            if outcome["document_id"] is not None:
                outcome["document_id"] = str(outcome["document_id"])
        for key in ("started_at", "finished_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


class ApprovalWorkflowEngine:
    """
    Orchestrates polling, parsing and applying of approval replies.

    The engine owns its run state; the flag moves Idle → Polling under a
    lock, and only the caller that wins that move proceeds. With a ``lease``
    the winner must also take the shared lease, which excludes checks run
    by engines in other processes.
    """

    def __init__(
        self,
        poller: MailboxPoller,
        applier: DecisionApplier,
        session_factory: sessionmaker,
        *,
        parser: Optional[Callable[[RawMessage], ParseResult]] = None,
        clock: Optional[Clock] = None,
        scheduler=None,
        on_summary: Optional[Callable[[RunSummary], None]] = None,
        lease: Optional[CheckLease] = None,
    ):
        self.poller = poller
        self.applier = applier
        self.session_factory = session_factory
        self.parser = parser or ReplyParser()
        self.clock = clock or SystemClock()
        self.scheduler = scheduler
        self.on_summary = on_summary
        self.lease = lease
        self._lock = threading.Lock()
        self._state = EngineState.IDLE

    @property
    def state(self) -> EngineState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state != EngineState.IDLE

    def start(self) -> None:
        """Begin scheduled checks through the injected scheduler."""
        if self.scheduler is None:
            raise RuntimeError("No scheduler configured")
        self.scheduler.start(self._scheduled_tick)

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.stop()

    def run_check(self, trigger: RunTrigger = RunTrigger.MANUAL) -> RunSummary:
        """
        Run one full approval check.

        Returns:
            RunSummary of the run

        Raises:
            AlreadyRunningError: Another check has not finished yet
            StoreUnavailableError: The shared lease could not be checked
        """
        if not self._try_begin():
            logger.info("Approval check (%s) rejected: a check is already running", RunTrigger(trigger).value)
            raise AlreadyRunningError()

        summary = RunSummary(trigger=RunTrigger(trigger).value, started_at=self.clock.now())
        try:
            try:
                messages = self.poller.fetch_new_messages()
            except MailboxUnavailableError as exc:
                logger.warning("Approval check aborted: %s", exc)
                summary.mailbox_error = str(exc)
                summary.add_error(f"Mailbox unavailable: {exc}")
                return summary

            for message in messages:
                self._process_message(message, summary)
            return summary
        finally:
            self.poller.close()
            summary.finished_at = self.clock.now()
            logger.info("Approval check (%s) finished: %s", summary.trigger, summary.message)
            try:
                self._record_run(summary)
            finally:
                if self.lease is not None:
                    self.lease.release()
                self._set_state(EngineState.IDLE)

    def _scheduled_tick(self) -> None:
        try:
            summary = self.run_check(RunTrigger.SCHEDULED)
        except AlreadyRunningError:
            return
        if self.on_summary is not None:
            self.on_summary(summary)

    def _process_message(self, message: RawMessage, summary: RunSummary) -> None:
        self._set_state(EngineState.PARSING)
        parsed = self.parser(message)

        if isinstance(parsed, Ignored):
            summary.ignored_count += 1
            summary.add_outcome(message, "ignored", detail=parsed.reason)
            return

        if isinstance(parsed, Malformed):
            # Left unseen for manual follow-up
            summary.add_error(f"Malformed reply {message.message_id}: {parsed.reason}")
            summary.add_outcome(message, "malformed", token_id=parsed.token_id, detail=parsed.reason)
            return

        self._set_state(EngineState.APPLYING)
        try:
            result = self.applier.apply(parsed)
        except StoreUnavailableError as exc:
            # Left unseen so the next run retries it
            summary.add_error(f"Store unavailable for token {parsed.token_id}: {exc.cause or exc}")
            summary.add_outcome(message, "store_error", token_id=parsed.token_id, detail=str(exc))
            return

        self._record_apply_result(message, parsed, result, summary)
        self._acknowledge(message, summary)

    def _record_apply_result(
        self,
        message: RawMessage,
        decision: ParsedDecision,
        result: ApplyResult,
        summary: RunSummary,
    ) -> None:
        summary.add_outcome(
            message,
            result.status.value,
            token_id=decision.token_id,
            detail=result.detail,
            document_id=result.document_id,
            new_status=result.new_status,
            actor=decision.sender or None,
        )
        if result.status == ApplyStatus.APPLIED:
            summary.processed_count += 1
            summary.messages.append(
                f"Document {result.document_id} {result.new_status} by token {decision.token_id}"
            )
        elif result.status == ApplyStatus.ALREADY_CONSUMED:
            summary.already_consumed_count += 1
        elif result.status == ApplyStatus.TOKEN_INVALID:
            summary.add_error(f"Invalid token {decision.token_id}: {result.detail}")
        elif result.status == ApplyStatus.DOCUMENT_CONFLICT:
            summary.add_error(f"Document conflict for token {decision.token_id}: {result.detail}")

    def _acknowledge(self, message: RawMessage, summary: RunSummary) -> None:
        try:
            self.poller.acknowledge(message)
        except MailboxUnavailableError as exc:
            # Redelivery is harmless: the token is no longer pending
            logger.warning("Could not acknowledge %s: %s", message.message_id, exc)
            summary.messages.append(f"Could not mark {message.message_id} seen")

    def _record_run(self, summary: RunSummary) -> None:
        """Append the run summary to the audit trail (best effort)."""
        action = AuditAction.ERROR if summary.mailbox_error else AuditAction.APPROVAL_CHECK
        if summary.mailbox_error:
            severity = AuditSeverity.ERROR
        elif summary.error_count:
            severity = AuditSeverity.WARNING
        else:
            severity = AuditSeverity.INFO
        db = self.session_factory()
        try:
            AuditStore(db, self.clock).append(
                action,
                actor="system",
                details={
                    "trigger": summary.trigger,
                    "processed_count": summary.processed_count,
                    "error_count": summary.error_count,
                    "already_consumed_count": summary.already_consumed_count,
                    "ignored_count": summary.ignored_count,
                    "message": summary.message,
                },
                severity=severity,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not record approval check summary")
        finally:
            db.close()

    def _try_begin(self) -> bool:
        with self._lock:
            if self._state != EngineState.IDLE:
                return False
            self._state = EngineState.POLLING
        if self.lease is None:
            return True
        try:
            won = self.lease.acquire()
        except StoreUnavailableError:
            self._set_state(EngineState.IDLE)
            raise
        if not won:
            self._set_state(EngineState.IDLE)
        return won

    def _set_state(self, state: EngineState) -> None:
        with self._lock:
            self._state = state
