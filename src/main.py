"""
Service Desk Escalation - Main Application
==========================================

Service requests raised by agents, tracked against working-hours SLA
deadlines and escalated automatically up the supervision hierarchy.

Modules:
- Hierarchy: users, RelationshipManagers, Franchises and who sees what
- Service Desk: tickets, escalation sweep, notifications

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, policy file, scheduler, attachment storage
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from src.config import settings
from src.core import ApplicationException, utc_now

# Infrastructure
from src.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    init_database,
    ping_database,
)

# Modules
from src.hierarchy.application import HierarchyResolver
from src.hierarchy.infrastructure import SQLAlchemySupervisorDirectory, SQLAlchemyUserDirectory
from src.servicedesk.application import EscalationService, NotificationService, SweepResult
from src.servicedesk.infrastructure import (
    EscalationPolicyManager,
    EscalationScheduler,
    LocalDocumentStorage,
    SQLAlchemyNotificationRepository,
    SQLAlchemyTicketRepository,
)
from src.servicedesk.interfaces import notifications_router, tickets_router

# Shared
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from src.shared.infrastructure.logging import get_logger, log_latency, setup_logging

logger = get_logger(__name__)


def build_sweep_job(app: FastAPI):
    """Sweep callable for the scheduler: one fresh session per run."""

    async def escalation_sweep_job(now: datetime) -> SweepResult:
        async with get_session_context() as session:
            users = SQLAlchemyUserDirectory(session)
            service = EscalationService(
                ticket_repository=SQLAlchemyTicketRepository(session),
                user_directory=users,
                hierarchy=HierarchyResolver(users, SQLAlchemySupervisorDirectory(session)),
                notifications=NotificationService(
                    SQLAlchemyNotificationRepository(session), clock=app.state.clock
                ),
                policy_provider=app.state.policy_manager,
                clock=app.state.clock,
            )
            with log_latency(logger, "escalation_sweep", scheduled_at=now.isoformat()):
                return await service.run_sweep(now)

    return escalation_sweep_job


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load escalation policy and watch the file
    4. Start the escalation scheduler

    SHUTDOWN:
    1. Stop the escalation scheduler
    2. Stop the policy file watcher
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Service Desk", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    app.state.settings = settings
    app.state.clock = utc_now

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use migrations in production)
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading escalation policy")
    policy_manager = EscalationPolicyManager()
    policy_manager.load(settings.escalation_config_path)
    policy_manager.start_watching()
    app.state.policy_manager = policy_manager

    app.state.document_storage = LocalDocumentStorage()

    scheduler = None
    if settings.escalation_interval_minutes > 0:
        scheduler = EscalationScheduler(
            build_sweep_job(app),
            policy_manager,
            interval_minutes=settings.escalation_interval_minutes,
            clock=app.state.clock,
        )
        await scheduler.start()
    else:
        logger.info("Escalation scheduler disabled")
    app.state.scheduler = scheduler

    logger.info("Service Desk started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Service Desk")

    if scheduler:
        await scheduler.stop()

    policy_manager.stop_watching()

    await close_database()

    logger.info("Service Desk shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Service Desk Escalation API",
    description="""
    ## Service requests with working-hours SLA escalation

    Agents raise service requests that are assigned to the owner of their
    RelationshipManager or Franchise. Each level gets a fixed budget of
    working time (07:00-18:00 business time by default). A background
    sweep escalates breached tickets to the regional manager and then to
    an admin, notifying everyone involved.

    **Callers identify themselves with the `X-User-ID` header.**

    ### Escalation levels

    | Level | Assigned to | SLA |
    |-------|-------------|-----|
    | 1 | RelationshipManager / Franchise owner | set at creation |
    | 2 | Regional manager | fresh window at escalation |
    | 3 | Admin | unchanged, priority High |
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

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(tickets_router)
app.include_router(notifications_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "escalation_policy": "Asia/Kolkata 7-18",
                        "escalation_scheduler": "running"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Database connectivity
    - Escalation policy in effect
    - Scheduler state
    """
    try:
        database = "connected" if await ping_database() else "not_initialized"
    except Exception as e:
        database = f"error: {e}"

    policy_manager = getattr(request.app.state, "policy_manager", None)
    scheduler = getattr(request.app.state, "scheduler", None)

    if policy_manager is not None:
        policy = policy_manager.get_policy()
        policy_check = f"{policy.timezone} {policy.work_start_hour}-{policy.work_end_hour}"
    else:
        policy_check = "not_loaded"

    checks = {
        "database": database,
        "escalation_policy": policy_check,
        "escalation_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
    }

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Service Desk Escalation",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "tickets": {
                "prefix": "/tickets",
                "endpoints": [
                    "GET /tickets/categories - List categories",
                    "POST /tickets - Raise a service request",
                    "GET /tickets - List visible tickets",
                    "GET /tickets/{id} - Get a ticket",
                    "PUT /tickets/{id} - Update status, add note, reassign",
                    "POST /tickets/{id}/resolve - Resolve a ticket"
                ]
            },
            "notifications": {
                "prefix": "/notifications",
                "endpoints": [
                    "GET /notifications - List my notifications",
                    "GET /notifications/unread-count - Unread count",
                    "PATCH /notifications/{id}/read - Mark one read",
                    "PATCH /notifications/read-all - Mark all read"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
