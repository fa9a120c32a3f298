from functools import lru_cache
from typing import Generator

from mailgate.bootstrap import build_engine, build_service
from mailgate.core.approval.engine import ApprovalWorkflowEngine
from mailgate.core.approval.service import ApprovalService
from mailgate.core.config import get_settings
from mailgate.db.session import SessionLocal, get_session_factory


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache()
def get_service() -> ApprovalService:
    """Approval service shared by all requests."""
    return build_service(get_settings(), get_session_factory())


@lru_cache()
def get_engine() -> ApprovalWorkflowEngine:
    """Workflow engine shared by all requests, so manual checks are single-flight."""
    return build_engine(get_settings(), get_session_factory(), service=get_service())
