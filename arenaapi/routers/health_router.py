import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from arenaapi.config import settings
from arenaapi.database.session import get_db
from arenaapi.schemas.health import HealthCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthCheckResponse)
def health_check(db: Session = Depends(get_db)) -> HealthCheckResponse:
    """Health check endpoint (DB 연결 포함)."""
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return HealthCheckResponse(
            status="unhealthy",
            database="error",
            environment=settings.ENVIRONMENT,
            error=str(e),
        )
    return HealthCheckResponse(environment=settings.ENVIRONMENT)
