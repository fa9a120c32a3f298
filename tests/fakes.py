"""In-memory stand-ins for the mailbox, the scheduler and outbound mail."""

import threading
from typing import Callable, Dict, List, Optional

from mailgate.core.approval.parser import RawMessage
from mailgate.services.mailbox import MailTransport


class FakeTransport(MailTransport):
    """Mailbox held in memory; tracks seen flags like an IMAP server would."""

    def __init__(self, messages: Optional[List[RawMessage]] = None):
        self.messages: Dict[str, RawMessage] = {}
        self.seen: set = set()
        self.connect_count = 0
        self.closed = 0
        self.connect_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self.mark_seen_error: Optional[Exception] = None
        for message in messages or []:
            self.deliver(message)

    def deliver(self, message: RawMessage) -> None:
        self.messages[message.uid] = message

    def connect(self) -> None:
        self.connect_count += 1
        if self.connect_error is not None:
            raise self.connect_error

    def list_unseen(self, subject_filter: Optional[str] = None) -> List[RawMessage]:
        if self.list_error is not None:
            raise self.list_error
        unseen = [m for uid, m in self.messages.items() if uid not in self.seen]
        if subject_filter:
            unseen = [m for m in unseen if subject_filter.lower() in m.subject.lower()]
        return unseen

    def mark_seen(self, uid: str) -> None:
        if self.mark_seen_error is not None:
            raise self.mark_seen_error
        self.seen.add(uid)

    def close(self) -> None:
        self.closed += 1


class BlockingTransport(FakeTransport):
    """Transport whose listing blocks until released, to hold a run open."""

    def __init__(self, messages: Optional[List[RawMessage]] = None):
        super().__init__(messages)
        self.entered = threading.Event()
        self.release = threading.Event()

    def list_unseen(self, subject_filter: Optional[str] = None) -> List[RawMessage]:
        self.entered.set()
        self.release.wait(timeout=10)
        return super().list_unseen(subject_filter)


class ManualScheduler:
    """Scheduler ticked by the test instead of a timer."""

    def __init__(self):
        self.callback: Optional[Callable[[], None]] = None
        self.stopped = False

    def start(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True

    def tick(self) -> None:
        if self.callback is None or self.stopped:
            raise RuntimeError("Scheduler is not running")
        self.callback()


class RecordingNotifier:
    """Collects outbound e-mails instead of sending them."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.requests: list = []
        self.notices: list = []
        self.fail_with = fail_with

    async def send_approval_request(self, document, token, *, requested_by="A colleague"):
        if self.fail_with is not None:
            raise self.fail_with
        self.requests.append((document, token, requested_by))
        return True

    async def send_decision_notice(self, document, *, new_status, actor):
        if self.fail_with is not None:
            raise self.fail_with
        self.notices.append((document, new_status, actor))
        return True
