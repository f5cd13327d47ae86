# backend/lessonbook/routes/health.py
"""Health check endpoints used by load balancers and deploy probes."""

import logging

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..core.config import settings

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


class LiveHealthResponse(BaseModel):
    ok: bool


class HealthCheckResponse(BaseModel):
    status: str
    environment: str
    database: bool


@router.get("/live", response_model=LiveHealthResponse)
def live_probe(response: Response) -> LiveHealthResponse:
    """Liveness probe that avoids touching external dependencies."""
    response.headers["Cache-Control"] = "no-store"
    return LiveHealthResponse(ok=True)


@router.get("/health", response_model=HealthCheckResponse)
def health_check(db: Session = Depends(get_db)) -> HealthCheckResponse:
    try:
        db.execute(text("SELECT 1"))
        db_status = True
        status = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = False
        status = "degraded"

    return HealthCheckResponse(status=status, environment=settings.environment, database=db_status)
