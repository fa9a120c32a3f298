"""API routers for MailGate."""

from . import approvals
from . import audit
from . import documents
from . import health

__all__ = [
    "approvals",
    "audit",
    "documents",
    "health",
]
