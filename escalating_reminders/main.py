"""Escalation engine FastAPI application."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from escalating_reminders import __version__
from escalating_reminders.config import settings
from escalating_reminders.database import close_database, create_tables, get_db_session
from escalating_reminders.dependencies import load_agent_executors
from escalating_reminders.logging_config import get_logger, setup_logging
from escalating_reminders.middleware import CorrelationIdMiddleware
from escalating_reminders.routers import (
    agent_subscriptions,
    escalation,
    escalation_profiles,
    health,
)
from escalating_reminders.services.escalation_presets import seed_presets
from escalating_reminders.services.escalation_scheduler import (
    start_scheduler,
    stop_scheduler,
)

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    if settings.create_tables_on_startup:
        await create_tables()
        logger.info("Database tables ensured")

    if settings.seed_presets_on_startup:
        async with get_db_session() as db:
            await seed_presets(db)

    agent_types = load_agent_executors(settings.agent_executors)
    logger.info("Agent executors ready", agent_types=agent_types)

    start_scheduler()
    logger.info("Escalation engine started")

    yield

    # Shutdown
    logger.info("Shutting down escalation engine...")
    stop_scheduler()
    await close_database()
    logger.info("Escalation engine shutdown complete")


app = FastAPI(
    title="Escalating Reminders",
    description="Escalation engine for unacknowledged reminders",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(CorrelationIdMiddleware)

app.include_router(health.router)
app.include_router(escalation.router)
app.include_router(escalation_profiles.router)
app.include_router(agent_subscriptions.router)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint."""
    return {
        "name": "Escalating Reminders",
        "version": __version__,
        "docs": "/docs",
    }
