"""
Health check endpoint with database and import job status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, text
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timedelta
import logging

from api.dependencies import get_db
from core.config import settings
from models.base import JobStatus, ACTIVE_STATUSES
from models.import_job import BulkImportJob
from schemas.api import HealthCheckResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Active and stale import job counts
    - Time of the last completed import
    """

    # Check database connectivity
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")
        return HealthCheckResponse(status="unhealthy", database_connected=False)

    active_jobs = 0
    stale_jobs = 0
    last_completed = None

    try:
        active_jobs = (await db.execute(
            select(func.count(BulkImportJob.id)).where(BulkImportJob.status.in_(ACTIVE_STATUSES))
        )).scalar() or 0

        cutoff = datetime.utcnow() - timedelta(minutes=settings.STALE_JOB_TIMEOUT_MINUTES)
        stale_jobs = (await db.execute(
            select(func.count(BulkImportJob.id)).where(
                BulkImportJob.status.in_(ACTIVE_STATUSES),
                BulkImportJob.last_updated < cutoff,
            )
        )).scalar() or 0

        last_completed = (await db.execute(
            select(func.max(BulkImportJob.completed_at)).where(
                BulkImportJob.status == JobStatus.COMPLETED
            )
        )).scalar()
    except SQLAlchemyError as e:
        logger.error(f"Failed to read import job status: {str(e)}")

    return HealthCheckResponse(
        status="degraded" if stale_jobs else "healthy",
        timestamp=datetime.utcnow(),
        database_connected=True,
        active_jobs=active_jobs,
        stale_jobs=stale_jobs,
        last_import_completed_at=last_completed,
    )
