"""Health check endpoints.

- /health: Basic health check
- /health/ready: Readiness probe (database reachable)
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mailgate import __version__
from mailgate.api.deps import get_db
from mailgate.core.clock import utcnow

router = APIRouter(tags=["health"])


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy"}
    except SQLAlchemyError as e:
        return {"status": "unhealthy", "error": str(e)}


@router.get("/health")
def health_check():
    """Returns 200 if the application is running."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/health/ready")
def readiness_probe(db: Session = Depends(get_db)):
    """Returns 200 when the database answers, 503 otherwise."""
    checks = {"database": check_database(db)}
    unhealthy = [name for name, check in checks.items() if check["status"] == "unhealthy"]

    if unhealthy:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "checks": checks, "failed": unhealthy},
        )
    return {"status": "ready", "checks": checks}
