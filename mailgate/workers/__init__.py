"""Background workers for MailGate."""

from mailgate.workers.scheduler import IntervalScheduler

__all__ = ["IntervalScheduler"]
