"""Recurring trigger for the approval check.

The engine receives a scheduler instead of owning a timer, so tests can use
a scheduler they tick by hand.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class IntervalScheduler:
    """
    Calls a callback every ``interval_seconds`` on a daemon thread.

    ``stop()`` cancels the ticker; a tick already running completes.
    """

    def __init__(self, interval_seconds: float, *, run_immediately: bool = False):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, callback: Callable[[], None]) -> None:
        if self.running:
            raise RuntimeError("Scheduler already started")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, args=(callback,), name="mailgate-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Approval check scheduled every %s seconds", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self, callback: Callable[[], None]) -> None:
        if self.run_immediately:
            self._tick(callback)
        while not self._stop_event.wait(self.interval_seconds):
            self._tick(callback)

    def _tick(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            # Keep the ticker alive; the next tick retries
            logger.exception("Scheduled approval check failed")
