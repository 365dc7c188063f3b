"""
Import trigger, cancellation and job status endpoints
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID
import logging

from api.dependencies import get_db, get_orchestrator, require_api_key
from core.exceptions import JobCreationError, JobNotFoundError, InvalidJobTransitionError
from models.base import JobStatus
from models.import_job import BulkImportJob
from schemas.imports import (
    ImportRequest,
    ImportResponse,
    ImportStats,
    BulkImportJobResponse,
    BulkImportJobList,
    ImportJobResponse,
)
from trail_import.jobs import JobTracker
from trail_import.orchestrator import ImportOrchestrator
from trail_import.progress import compute_progress

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/imports", tags=["Imports"])


def bulk_job_response(job: BulkImportJob) -> BulkImportJobResponse:
    response = BulkImportJobResponse.model_validate(job)
    response.progress_percent = round(
        compute_progress(job.trails_processed, job.total_trails_requested), 2
    )
    return response


def import_response(job: BulkImportJob, created: bool) -> ImportResponse:
    """Structured trigger result, also for partial and total source failure"""
    stats = ImportStats(
        processed=job.trails_processed,
        added=job.trails_added,
        updated=job.trails_updated,
        failed=job.trails_failed,
    )

    if not created:
        message = f"An import for this target is already {job.status.value}"
    elif job.status == JobStatus.COMPLETED:
        message = (
            f"Imported {job.trails_added} new and {job.trails_updated} updated trails "
            f"from {job.total_sources} source(s)"
        )
        if job.source_errors:
            failed_sources = ", ".join(sorted(job.source_errors))
            message += f"; failed sources: {failed_sources}"
    elif job.status == JobStatus.ERROR:
        message = job.error_message or "Import failed"
        if job.source_errors:
            details = "; ".join(f"{source}: {error}" for source, error in sorted(job.source_errors.items()))
            message += f" ({details})"
    else:
        message = "Import started"

    return ImportResponse(
        success=job.status != JobStatus.ERROR,
        message=message,
        stats=stats,
        job_id=job.id,
        status=job.status,
        already_running=not created,
    )


@router.post("", response_model=ImportResponse, dependencies=[Depends(require_api_key)])
async def trigger_import(
    body: ImportRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """
    Start a bulk import.

    Returns 200 with a structured body for partial and total source
    failure; 503 only when the job record cannot be created. With
    ``background=true`` the run continues after the response.
    """
    request_id = getattr(request.state, "request_id", "-")
    logger.info(
        f"[{request_id}] POST /imports sources={body.sources} "
        f"max_per_source={body.max_trails_per_source} background={body.background}"
    )

    try:
        job, created = await orchestrator.start(body)
    except JobCreationError as e:
        logger.error(
            f"[{request_id}] Could not create import job: {e.message}",
            extra={"error_context": e.to_dict()},
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Import job could not be created",
        )

    if created:
        if body.background:
            background_tasks.add_task(orchestrator.run, job.id, body)
        else:
            job = await orchestrator.run(job.id, body)

    return import_response(job, created)


@router.post("/{job_id}/cancel", response_model=BulkImportJobResponse, dependencies=[Depends(require_api_key)])
async def cancel_import(job_id: UUID, db: AsyncSession = Depends(get_db)):
    """Cancel an active bulk import; committed trails are kept"""
    try:
        job = await JobTracker(db).cancel(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except InvalidJobTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    return bulk_job_response(job)


@router.get("/jobs", response_model=BulkImportJobList)
async def list_jobs(
    limit: int = Query(20, ge=1, le=100, description="Number of jobs to return"),
    status_filter: Optional[JobStatus] = Query(None, alias="status", description="Filter by status"),
    db: AsyncSession = Depends(get_db),
):
    """Most recent bulk imports first"""
    jobs, total = await JobTracker(db).list_bulk_jobs(limit=limit, status=status_filter)
    return BulkImportJobList(jobs=[bulk_job_response(job) for job in jobs], total=total)


@router.get("/jobs/{job_id}", response_model=BulkImportJobResponse)
async def get_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    """Bulk import with progress and its per-source jobs"""
    try:
        job = await JobTracker(db).get_bulk_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return bulk_job_response(job)


@router.get("/source-jobs/{job_id}", response_model=ImportJobResponse)
async def get_source_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    """One per-source import job"""
    try:
        job = await JobTracker(db).get_source_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return ImportJobResponse.model_validate(job)
