"""
FinOps SLA Monitor - Main Application
======================================

SLA deadline monitoring and alert lifecycle engine.

Watches scheduled operational tasks, records PRE_START / MISSED_START /
ESCALATED / JUSTIFICATION_REQUIRED notifications exactly once per task
episode, and holds escalated tasks until a written justification is
submitted.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects, lifecycle evaluator
- Infrastructure: Database, policy file watcher, scheduler, webhook
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from finops_sla.config import settings
from finops_sla.core import ApplicationException

# Infrastructure
from finops_sla.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)

# SLA Module
from finops_sla.sla.infrastructure.external import (
    PolicyConfigManager, EscalationNotifier, SLAScheduler
)
from finops_sla.sla.interfaces import sla_router, SLAServices, build_sla_services

# Shared
from finops_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from finops_sla.shared.infrastructure.logging import setup_logging, get_logger, log_latency

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load threshold policy and watch it for changes
    4. Build SLA services
    5. Start the evaluation scheduler

    SHUTDOWN:
    1. Stop scheduler
    2. Stop policy watcher
    3. Close webhook client
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting FinOps SLA Monitor", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })
    app.state.settings = settings

    init_database()

    # If the database is not reachable the API still starts; SLA routes
    # answer 503 until it is.
    database_ready = True
    try:
        await create_tables()
    except ApplicationException as e:
        database_ready = False
        logger.warning("Database not available - running in degraded mode", extra={"error": e.message})

    policy_manager = PolicyConfigManager()
    policy = policy_manager.load(settings.sla_policy_path)
    policy_manager.start_watching()

    notifier = EscalationNotifier()
    services: Optional[SLAServices] = None
    scheduler: Optional[SLAScheduler] = None

    if database_ready:
        services = build_sla_services(get_session_maker(), policy_manager, notifier=notifier)
        app.state.sla = services

        if settings.enable_scheduler:
            evaluation = services.evaluation

            async def sla_tick():
                with log_latency(logger, "sla_tick"):
                    await evaluation.run_tick()

            async def sla_purge():
                try:
                    await evaluation.purge_expired_notifications()
                except ApplicationException as e:
                    logger.error("Notification purge failed", extra={"error": e.message})

            scheduler = SLAScheduler(interval_seconds=policy.evaluation_interval_seconds)
            await scheduler.start(sla_tick, sla_purge)
            policy_manager.on_change(
                lambda _old, new: scheduler.reschedule(new.evaluation_interval_seconds)
            )

    app.state.sla_scheduler = scheduler
    logger.info("FinOps SLA Monitor started", extra={"database_ready": database_ready})

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down FinOps SLA Monitor")

    if scheduler:
        await scheduler.stop()

    policy_manager.stop_watching()
    if services:
        await services.dispatcher.drain(timeout_seconds=settings.webhook_timeout_seconds)
    await notifier.close()
    await close_database()

    logger.info("FinOps SLA Monitor shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="FinOps SLA Monitor API",
        description="""
    ## SLA deadline monitoring and alert lifecycle

    **Lifecycle:** `PENDING` → `PRE_START` → `DUE` → `SLA_BREACHED` → `ESCALATED`
    → `ACKNOWLEDGED` → `COMPLETED`

    **Endpoints:**
    - `GET /sla/notifications` - Notification ledger with live countdowns
    - `POST /sla/notifications/{id}/read` / `archive` - Read and archive
    - `POST /sla/tasks/{id}/justification` - Release an escalated task
    - `POST /sla/sync` - Run an evaluation pass now
    - `GET /sla/dashboard` - Aggregate counts

    Escalated tasks stay escalated until a justification is submitted,
    even if they complete in the meantime.
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added last so it runs first and the logger sees the correlation id
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)

    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(sla_router)

    @app.get("/health", tags=["Health"], responses={
        200: {
            "description": "Service health",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "environment": "development",
                        "checks": {
                            "database": "connected",
                            "sla_policy": "loaded",
                            "sla_scheduler": "running",
                            "last_tick_tasks_evaluated": 12
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        services = getattr(request.app.state, "sla", None)
        scheduler = getattr(request.app.state, "sla_scheduler", None)

        checks = {
            "database": "connected" if services else "unavailable",
            "sla_policy": "loaded" if services else "unknown",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        }
        if services and services.evaluation.last_report:
            checks["last_tick_tasks_evaluated"] = services.evaluation.last_report.tasks_evaluated
            checks["ticks_skipped"] = services.evaluation.ticks_skipped

        return {
            "status": "healthy" if services else "degraded",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "FinOps SLA Monitor",
            "version": settings.app_version,
            "architecture": "Clean Architecture",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "sla": {
                    "prefix": "/sla",
                    "endpoints": [
                        "GET /sla/notifications - List notifications",
                        "GET /sla/notifications/summary - Per-kind counts",
                        "POST /sla/notifications/read-all - Mark all read",
                        "POST /sla/notifications/{id}/read - Mark read",
                        "POST /sla/notifications/{id}/archive - Archive",
                        "POST /sla/tasks - Register task",
                        "GET /sla/tasks/{id} - Live task status",
                        "POST /sla/tasks/{id}/complete - Record completion",
                        "POST /sla/tasks/{id}/next-episode - Start next occurrence",
                        "POST /sla/tasks/{id}/justification - Submit justification",
                        "POST /sla/sync - Evaluate now",
                        "GET /sla/dashboard - Dashboard counts"
                    ]
                }
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "finops_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
