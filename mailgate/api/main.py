import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mailgate import __version__
from mailgate.api import deps
from mailgate.api.routers import approvals, audit, documents, health
from mailgate.common.logger import configure_from_settings
from mailgate.core.config import get_settings

settings = get_settings()
configure_from_settings(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the in-process approval scheduler when Celery beat is not used."""
    engine = None
    if settings.embedded_scheduler:
        engine = deps.get_engine()
        engine.start()
        logger.info("Embedded approval scheduler started")
    try:
        yield
    finally:
        if engine is not None:
            engine.stop()
            logger.info("Embedded approval scheduler stopped")


app = FastAPI(
    title=settings.app_name,
    description="E-mail based document approval workflow",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(documents.router, prefix="/api")
app.include_router(approvals.router, prefix="/api")
app.include_router(audit.router, prefix="/api")


@app.get("/")
def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }
