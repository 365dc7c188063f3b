"""
Import job bookkeeping: creation, forward-only transitions, counters.

Job rows are the only shared mutable state of an import run. Counters are
only ever changed with SQL-side increments (``SET x = x + :n``) so
concurrent workers never lose updates; status changes are guarded with the
expected current status in the WHERE clause.
"""

from typing import Optional, List, Tuple, Type, Union
from datetime import datetime, timedelta
from uuid import UUID
import logging

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import JobStatus, ACTIVE_STATUSES
from models.import_job import ImportJob, BulkImportJob
from schemas.imports import ImportRequest
from core.exceptions import (
    JobNotFoundError,
    JobCreationError,
    InvalidJobTransitionError,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled"
ZERO_TRAILS_MESSAGE = "Import finished with zero trails added"
STALE_MESSAGE = "Marked as failed: no progress within the stale job timeout"

JobModel = Union[Type[ImportJob], Type[BulkImportJob]]


class JobTracker:
    """
    Owns ImportJob and BulkImportJob records for one session.

    Responsibilities:
    - Create bulk jobs with duplicate detection per import target
    - Create and transition per-source jobs
    - Increment counters atomically
    - Finalize, cancel and recover stale jobs
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_bulk_job(self, job_id: UUID) -> BulkImportJob:
        result = await self.db.execute(
            select(BulkImportJob)
            .where(BulkImportJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(
                f"No bulk import job with id {job_id}",
                context={"job_id": str(job_id)},
            )
        return job

    async def get_source_job(self, job_id: UUID) -> ImportJob:
        result = await self.db.execute(
            select(ImportJob)
            .where(ImportJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(
                f"No import job with id {job_id}",
                context={"job_id": str(job_id)},
            )
        return job

    async def list_bulk_jobs(
        self,
        limit: int = 20,
        status: Optional[JobStatus] = None,
    ) -> Tuple[List[BulkImportJob], int]:
        """Most recent bulk jobs first, with the total matching count"""
        query = select(BulkImportJob)
        count_query = select(func.count(BulkImportJob.id))
        if status is not None:
            query = query.where(BulkImportJob.status == status)
            count_query = count_query.where(BulkImportJob.status == status)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(BulkImportJob.started_at.desc()).limit(limit)
        )
        return list(result.scalars().all()), total

    async def find_active_job(self, target_key: str) -> Optional[BulkImportJob]:
        result = await self.db.execute(
            select(BulkImportJob)
            .where(
                BulkImportJob.target_key == target_key,
                BulkImportJob.status.in_(ACTIVE_STATUSES),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def status_of(self, model: JobModel, job_id: UUID) -> JobStatus:
        result = await self.db.execute(select(model.status).where(model.id == job_id))
        status = result.scalar_one_or_none()
        if status is None:
            raise JobNotFoundError(
                f"No {model.__tablename__} row with id {job_id}",
                context={"job_id": str(job_id)},
            )
        return JobStatus(status)

    async def is_cancelled(self, bulk_job_id: UUID) -> bool:
        """True once the bulk job has left the active states during a run"""
        return (await self.status_of(BulkImportJob, bulk_job_id)).is_terminal

    # ========================================================================
    # Creation
    # ========================================================================

    async def create_bulk_job(self, request: ImportRequest) -> Tuple[BulkImportJob, bool]:
        """
        Create the bulk job for a request, or return the active one.

        Returns:
            (job, created): ``created`` is False when an active job for the
            same target already existed

        Raises:
            JobCreationError: the record could not be written
        """
        target_key = request.target_key()

        existing = await self.find_active_job(target_key)
        if existing is not None:
            logger.info(f"Import already running for '{target_key}': job {existing.id}")
            return existing, False

        job = BulkImportJob(
            target_key=target_key,
            status=JobStatus.QUEUED,
            started_at=datetime.utcnow(),
            total_trails_requested=len(request.sources) * request.max_trails_per_source,
            total_sources=len(request.sources),
            config=request.model_dump(mode="json", by_alias=True),
        )

        try:
            self.db.add(job)
            await self.db.commit()
        except IntegrityError as e:
            # Lost the race against a concurrent request for the same target
            await self.db.rollback()
            existing = await self.find_active_job(target_key)
            if existing is not None:
                logger.info(f"Concurrent import won for '{target_key}': job {existing.id}")
                return existing, False
            raise JobCreationError(
                "Failed to create bulk import job",
                context={"target_key": target_key},
                original_exception=e,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise JobCreationError(
                "Failed to create bulk import job",
                context={"target_key": target_key},
                original_exception=e,
            )

        logger.info(
            f"Created bulk import job {job.id} for '{target_key}' "
            f"({job.total_trails_requested} trails requested)"
        )
        return job, True

    async def create_source_job(
        self,
        bulk_job_id: UUID,
        source: str,
        total_trails_requested: int,
    ) -> ImportJob:
        job = ImportJob(
            bulk_job_id=bulk_job_id,
            source=source,
            status=JobStatus.QUEUED,
            started_at=datetime.utcnow(),
            total_trails_requested=total_trails_requested,
            total_sources=1,
        )
        self.db.add(job)
        await self.db.commit()
        return job

    # ========================================================================
    # Transitions
    # ========================================================================

    async def transition(
        self,
        model: JobModel,
        job_id: UUID,
        target: JobStatus,
        error_message: Optional[str] = None,
    ) -> JobStatus:
        """
        Move a job forward to ``target``.

        Raises:
            InvalidJobTransitionError: the move would go backwards or the
                status changed concurrently
        """
        current = await self.status_of(model, job_id)
        if not current.can_transition_to(target):
            raise InvalidJobTransitionError(
                f"Cannot move job from {current.value} to {target.value}",
                context={
                    "job_id": str(job_id),
                    "current_status": current.value,
                    "requested_status": target.value,
                },
            )

        values = {"status": target, "last_updated": datetime.utcnow()}
        if target.is_terminal:
            values["completed_at"] = datetime.utcnow()
        if error_message is not None:
            values["error_message"] = error_message

        result = await self.db.execute(
            update(model)
            .where(model.id == job_id, model.status == current)
            .values(**values)
        )
        await self.db.commit()

        if result.rowcount == 0:
            raise InvalidJobTransitionError(
                "Job status changed concurrently",
                context={
                    "job_id": str(job_id),
                    "current_status": current.value,
                    "requested_status": target.value,
                },
            )
        return target

    async def fail_job(self, model: JobModel, job_id: UUID, error_message: str) -> bool:
        """Mark an active job as error; a no-op for terminal jobs"""
        result = await self.db.execute(
            update(model)
            .where(model.id == job_id, model.status.in_(ACTIVE_STATUSES))
            .values(
                status=JobStatus.ERROR,
                error_message=error_message,
                completed_at=datetime.utcnow(),
                last_updated=datetime.utcnow(),
            )
        )
        await self.db.commit()
        return result.rowcount > 0

    # ========================================================================
    # Counters
    # ========================================================================

    async def increment(
        self,
        source_job_id: Optional[UUID],
        bulk_job_id: Optional[UUID],
        processed: int = 0,
        added: int = 0,
        updated: int = 0,
        failed: int = 0,
    ):
        """
        Add to the counters of the source job and its bulk job.

        Does not commit: callers commit together with the writes the
        counters describe.
        """
        if not (processed or added or updated or failed):
            return

        for model, job_id in ((ImportJob, source_job_id), (BulkImportJob, bulk_job_id)):
            if job_id is None:
                continue
            await self.db.execute(
                update(model)
                .where(model.id == job_id)
                .values(
                    trails_processed=model.trails_processed + processed,
                    trails_added=model.trails_added + added,
                    trails_updated=model.trails_updated + updated,
                    trails_failed=model.trails_failed + failed,
                    last_updated=datetime.utcnow(),
                )
            )

    # ========================================================================
    # Finalization, cancellation, recovery
    # ========================================================================

    async def finalize_source_job(self, job_id: UUID) -> ImportJob:
        """Complete a source job unless it was already failed or cancelled"""
        job = await self.get_source_job(job_id)
        if job.status.is_active:
            await self.transition(ImportJob, job_id, JobStatus.COMPLETED)
            job = await self.get_source_job(job_id)
        return job

    async def finalize_bulk_job(self, job_id: UUID) -> BulkImportJob:
        """
        Set the terminal status of a bulk job.

        completed when at least one trail was added or updated, otherwise
        error. A job cancelled or failed during the run keeps its status.
        Per-source failures are collected into ``source_errors``.
        """
        job = await self.get_bulk_job(job_id)

        source_errors = {
            child.source: child.error_message or "Source failed"
            for child in job.source_jobs
            if child.status == JobStatus.ERROR
        }

        now = datetime.utcnow()

        if job.status.is_active:
            if job.trails_added + job.trails_updated > 0:
                status_values = {"status": JobStatus.COMPLETED}
            else:
                status_values = {"status": JobStatus.ERROR, "error_message": ZERO_TRAILS_MESSAGE}

            # A cancel committed since the read above keeps its status
            await self.db.execute(
                update(BulkImportJob)
                .where(BulkImportJob.id == job_id, BulkImportJob.status.in_(ACTIVE_STATUSES))
                .values(**status_values)
            )

        await self.db.execute(
            update(BulkImportJob)
            .where(BulkImportJob.id == job_id)
            .values(
                source_errors=source_errors or None,
                completed_at=func.coalesce(BulkImportJob.completed_at, now),
                last_updated=now,
            )
        )
        await self.db.commit()

        job = await self.get_bulk_job(job_id)
        logger.info(
            f"Bulk import job {job_id} finished: {job.status.value} "
            f"(processed={job.trails_processed}, added={job.trails_added}, "
            f"updated={job.trails_updated}, failed={job.trails_failed})"
        )
        return job

    async def cancel(self, job_id: UUID) -> BulkImportJob:
        """
        Cancel an active bulk job and its unfinished source jobs.

        Committed work is kept; workers observe the status and stop.

        Raises:
            JobNotFoundError: unknown job id
            InvalidJobTransitionError: the job already finished
        """
        job = await self.get_bulk_job(job_id)
        if job.status.is_terminal:
            raise InvalidJobTransitionError(
                f"Job already {job.status.value}",
                context={"job_id": str(job_id), "current_status": job.status.value},
            )

        await self.transition(BulkImportJob, job_id, JobStatus.ERROR, CANCELLED_MESSAGE)
        await self.db.execute(
            update(ImportJob)
            .where(ImportJob.bulk_job_id == job_id, ImportJob.status.in_(ACTIVE_STATUSES))
            .values(
                status=JobStatus.ERROR,
                error_message=CANCELLED_MESSAGE,
                completed_at=datetime.utcnow(),
                last_updated=datetime.utcnow(),
            )
        )
        await self.db.commit()

        logger.info(f"Cancelled bulk import job {job_id}")
        return await self.get_bulk_job(job_id)

    async def fail_stale_jobs(self, timeout_minutes: int) -> int:
        """
        Fail active bulk jobs that have made no progress within the timeout.

        Returns:
            Number of bulk jobs failed
        """
        cutoff = datetime.utcnow() - timedelta(minutes=timeout_minutes)
        result = await self.db.execute(
            select(BulkImportJob.id).where(
                BulkImportJob.status.in_(ACTIVE_STATUSES),
                BulkImportJob.last_updated < cutoff,
            )
        )
        stale_ids = list(result.scalars().all())
        if not stale_ids:
            return 0

        now = datetime.utcnow()
        for model, column in ((BulkImportJob, BulkImportJob.id), (ImportJob, ImportJob.bulk_job_id)):
            await self.db.execute(
                update(model)
                .where(column.in_(stale_ids), model.status.in_(ACTIVE_STATUSES))
                .values(
                    status=JobStatus.ERROR,
                    error_message=STALE_MESSAGE,
                    completed_at=now,
                    last_updated=now,
                )
            )
        await self.db.commit()

        logger.warning(f"Failed {len(stale_ids)} stale import job(s) older than {timeout_minutes} minutes")
        return len(stale_ids)

    async def count_active_jobs(self) -> int:
        result = await self.db.execute(
            select(func.count(BulkImportJob.id)).where(BulkImportJob.status.in_(ACTIVE_STATUSES))
        )
        return result.scalar() or 0
