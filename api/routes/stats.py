"""
Trail and import job statistics endpoint
"""
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import logging

from api.dependencies import get_db
from models.base import JobStatus
from models.import_job import BulkImportJob
from models.trail import Trail
from schemas.api import StatsResponse, JobTotals

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Statistics"])


@router.get("/stats", response_model=StatsResponse)
async def get_stats(db: AsyncSession = Depends(get_db)):
    """
    Get trail and import statistics.

    Returns:
    - Trail counts per source and difficulty
    - Bulk job counts per status and lifetime counters
    - Last completed import and average import duration
    """
    logger.info("GET /stats")

    # ========== Trails ==========

    total_trails = (await db.execute(select(func.count()).select_from(Trail))).scalar()

    by_source = await db.execute(
        select(Trail.source, func.count()).group_by(Trail.source)
    )
    trails_by_source = {source: count for source, count in by_source.all()}

    by_difficulty = await db.execute(
        select(Trail.difficulty, func.count()).group_by(Trail.difficulty)
    )
    trails_by_difficulty = {
        (difficulty.value if hasattr(difficulty, "value") else difficulty): count
        for difficulty, count in by_difficulty.all()
    }

    # ========== Import jobs ==========

    by_status = await db.execute(
        select(BulkImportJob.status, func.count()).group_by(BulkImportJob.status)
    )
    jobs_by_status = {
        (status.value if hasattr(status, "value") else status): count
        for status, count in by_status.all()
    }

    totals = (await db.execute(
        select(
            func.coalesce(func.sum(BulkImportJob.trails_processed), 0),
            func.coalesce(func.sum(BulkImportJob.trails_added), 0),
            func.coalesce(func.sum(BulkImportJob.trails_updated), 0),
            func.coalesce(func.sum(BulkImportJob.trails_failed), 0),
        )
    )).one()

    completed = await db.execute(
        select(BulkImportJob.started_at, BulkImportJob.completed_at).where(
            BulkImportJob.status == JobStatus.COMPLETED,
            BulkImportJob.completed_at.isnot(None),
        )
    )
    durations = []
    last_completed = None
    for started_at, completed_at in completed.all():
        durations.append((completed_at - started_at).total_seconds())
        if last_completed is None or completed_at > last_completed:
            last_completed = completed_at

    return StatsResponse(
        timestamp=datetime.utcnow(),
        total_trails=total_trails or 0,
        trails_by_source=trails_by_source,
        trails_by_difficulty=trails_by_difficulty,
        jobs=JobTotals(
            total_jobs=sum(jobs_by_status.values()),
            by_status=jobs_by_status,
            trails_processed=totals[0],
            trails_added=totals[1],
            trails_updated=totals[2],
            trails_failed=totals[3],
        ),
        last_import_completed_at=last_completed,
        avg_import_duration_seconds=round(sum(durations) / len(durations), 2) if durations else None,
    )
