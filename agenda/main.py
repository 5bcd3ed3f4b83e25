"""
Agenda API - Main Application

Appointment booking: slot search, booking, cancellation and rescheduling,
payment checkout and provider webhooks, and the maintenance sweep.

SECURITY FEATURES:
- Conditional API docs (disabled in production by default)
- Structured logging without sensitive data
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from agenda.api.v2.router import api_router
from agenda.webhooks.payments import payments_webhook_router
from agenda.config import settings
from agenda.database import init_db
from agenda.exceptions import register_exception_handlers
from agenda.tasks.maintenance_scheduler import start_maintenance_scheduler, stop_maintenance_scheduler
# Import all models to register them with SQLAlchemy metadata before init_db()
from agenda.models import (  # noqa: F401
    Appointment, Blackout, Branch, BusinessHours, Customer, Payment,
    Reminder, Service, ServiceType, ServiceTypeAssignment, Staff, StaffHours, WebhookEvent,
)

# Configure secure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Agenda API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    if settings.DATABASE_URL:
        logger.info(f"Database URL prefix: {settings.DATABASE_URL[:30]}...")
    if not settings.is_production:
        # Production schema is managed by alembic
        try:
            await init_db()
            logger.info("Database initialized successfully")
        except Exception as e:
            # Don't log full exception details which may contain credentials
            logger.error(f"Database initialization failed: {type(e).__name__}")
            logger.warning("App starting without database - some features may not work")

    if settings.MAINTENANCE_SCHEDULER_ENABLED:
        start_maintenance_scheduler()
    yield
    if settings.MAINTENANCE_SCHEDULER_ENABLED:
        stop_maintenance_scheduler()
    logger.info("Shutting down Agenda API...")


docs_url = "/docs" if settings.DOCS_ENABLED else None
redoc_url = "/redoc" if settings.DOCS_ENABLED else None

app = FastAPI(
    title="Agenda API",
    description="Appointment booking and payment reconciliation",
    version="1.0.0",
    docs_url=docs_url,
    redoc_url=redoc_url,
    lifespan=lifespan,
)

register_exception_handlers(app)

allowed_origins = [settings.FRONTEND_URL]
if not settings.is_production:
    allowed_origins.extend([
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v2")
app.include_router(payments_webhook_router, prefix="/webhooks", tags=["webhooks"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
    }


# For running with uvicorn directly (development only)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "agenda.main:app",
        host="0.0.0.0",
        port=5001,
        reload=settings.DEBUG,
    )
