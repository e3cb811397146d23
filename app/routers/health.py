"""Health check endpoint for the platform's service monitor."""

from fastapi import APIRouter
from pydantic import BaseModel

from app.database import check_db_connection
from app.settings import settings

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    environment: str
    database: str
    version: str = "1.0.0"


@router.get("/health", response_model=HealthResponse, include_in_schema=False)
def health_check() -> HealthResponse:
    """
    Returns status "ok" when the database answers, "degraded" otherwise.
    The clearing house is not checked here: an outage there only delays
    reconciliation, it does not make this service unhealthy.
    """
    db_ok = check_db_connection()
    return HealthResponse(
        status="ok" if db_ok else "degraded",
        environment=settings.environment,
        database="connected" if db_ok else "unreachable",
    )
