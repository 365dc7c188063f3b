"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, imports, trails, stats
from core.config import settings
from core.database import async_session_maker
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from trail_import.scheduler import ImportScheduler

# Configure logging
setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Trail Import API",
    description="Bulk trail-data import pipeline: trigger imports, track jobs, browse trails",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Scheduled refresh import (started only when enabled)
scheduler = ImportScheduler(async_session_maker)


# Include routers
app.include_router(health.router)
app.include_router(imports.router)
app.include_router(trails.router)
app.include_router(stats.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Trail Import API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.IMPORT_SCHEDULER_ENABLED:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Trail Import API")
    if settings.IMPORT_SCHEDULER_ENABLED:
        scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Trail Import API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "imports": "/imports",
            "jobs": "/imports/jobs",
            "trails": "/trails",
            "stats": "/stats"
        }
    }
