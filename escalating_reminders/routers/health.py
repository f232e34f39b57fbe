"""Health check endpoints for container orchestration."""

from typing import Any

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse

from escalating_reminders.database import check_database_connection
from escalating_reminders.services.escalation_scheduler import get_scheduler

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=None)
async def health_check() -> Response:
    """
    Health check endpoint with database and poller status.

    Returns 503 with ``"status": "degraded"`` when the database is unreachable.
    """
    db_connected = await check_database_connection()
    scheduler_running = get_scheduler() is not None

    return JSONResponse(
        status_code=(
            status.HTTP_200_OK if db_connected else status.HTTP_503_SERVICE_UNAVAILABLE
        ),
        content={
            "status": "healthy" if db_connected else "degraded",
            "database": "connected" if db_connected else "disconnected",
            "scheduler": "running" if scheduler_running else "stopped",
        },
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, Any]:
    """
    Liveness probe.

    Returns success if the process is running; does not touch the database.
    """
    return {"status": "alive"}
