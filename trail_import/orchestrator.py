# ============================================================================
# File: trail_import/orchestrator.py
# Description: Bulk import orchestrator with bounded concurrency per source
# ============================================================================
"""
Import Orchestrator - coordinates Fetch, Normalize, Write across sources.

This module provides:
- Duplicate-run protection per import target
- Stale job recovery before new runs start
- Bounded worker pool, one session per worker
- Per-source failure isolation (one provider failing never aborts the rest)
- Cancellation observed before each source and each batch
"""

from typing import Dict, Optional, Tuple, Callable, List
from uuid import UUID
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings, settings as default_settings
from core.exceptions import (
    ImportPipelineError,
    InvalidJobTransitionError,
    UnknownSourceError,
)
from models.base import JobStatus
from models.import_job import ImportJob, BulkImportJob
from schemas.imports import ImportRequest
from trail_import.adapters.base import SourceAdapter
from trail_import.jobs import JobTracker, CANCELLED_MESSAGE
from trail_import.normalizer import normalize_many
from trail_import.sources import build_adapters
from trail_import.writer import BatchWriter, clamp_batch_size, split_batches

logger = logging.getLogger(__name__)

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 6


def clamp_concurrency(concurrency: Optional[int], default: int) -> int:
    value = concurrency or default
    return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, value))


class ImportOrchestrator:
    """
    Bulk trail import orchestrator.

    Responsibilities:
    - Create the BulkImportJob and one ImportJob per source
    - Run sources through fetch -> normalize -> batch write
    - Isolate per-source failures
    - Finalize the bulk job status from its counters
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        adapters: Optional[Dict[str, SourceAdapter]] = None,
        settings: Settings = default_settings,
        adapter_factory: Callable[[List[str]], Dict[str, SourceAdapter]] = build_adapters,
    ):
        self.session_factory = session_factory
        self.adapters = adapters
        self.settings = settings
        self.adapter_factory = adapter_factory

    def _adapters_for(self, sources: List[str]) -> Dict[str, SourceAdapter]:
        if self.adapters is not None:
            return self.adapters
        return self.adapter_factory(sources)

    async def start(self, request: ImportRequest) -> Tuple[BulkImportJob, bool]:
        """
        Create the job records for a request.

        Returns:
            (bulk job, created): an already active job for the same target
            is returned with ``created=False``

        Raises:
            JobCreationError: the bulk job could not be written
        """
        async with self.session_factory() as session:
            tracker = JobTracker(session)
            await tracker.fail_stale_jobs(self.settings.STALE_JOB_TIMEOUT_MINUTES)

            job, created = await tracker.create_bulk_job(request)
            if created:
                for source in request.sources:
                    await tracker.create_source_job(
                        job.id, source, request.max_trails_per_source
                    )
                job = await tracker.get_bulk_job(job.id)
            return job, created

    async def execute(self, request: ImportRequest) -> Tuple[BulkImportJob, bool]:
        """Start and run a request to completion in the caller's task"""
        job, created = await self.start(request)
        if created:
            job = await self.run(job.id, request)
        return job, created

    async def run(self, job_id: UUID, request: ImportRequest) -> BulkImportJob:
        """
        Run every source of a started bulk job, then finalize it.

        Never raises for provider or data problems; those end up in the
        job record.
        """
        adapters = self._adapters_for(request.sources)
        batch_size = clamp_batch_size(request.batch_size, self.settings.IMPORT_BATCH_SIZE)
        concurrency = clamp_concurrency(request.concurrency, self.settings.IMPORT_CONCURRENCY)

        async with self.session_factory() as session:
            tracker = JobTracker(session)
            try:
                await tracker.transition(BulkImportJob, job_id, JobStatus.PROCESSING)
            except InvalidJobTransitionError as e:
                logger.info(f"Bulk import job {job_id} not started: {e.message}")
                return await tracker.finalize_bulk_job(job_id)

            job = await tracker.get_bulk_job(job_id)
            children = {child.source: child.id for child in job.source_jobs}

        logger.info(
            f"Starting bulk import {job_id}: sources={request.sources}, "
            f"batch_size={batch_size}, concurrency={concurrency}"
        )

        semaphore = asyncio.Semaphore(concurrency)

        async def worker(source: str):
            async with semaphore:
                await self._run_source(
                    bulk_job_id=job_id,
                    source_job_id=children[source],
                    source=source,
                    adapter=adapters.get(source),
                    request=request,
                    batch_size=batch_size,
                )

        await asyncio.gather(*(worker(source) for source in request.sources if source in children))

        async with self.session_factory() as session:
            return await JobTracker(session).finalize_bulk_job(job_id)

    async def _run_source(
        self,
        bulk_job_id: UUID,
        source_job_id: UUID,
        source: str,
        adapter: Optional[SourceAdapter],
        request: ImportRequest,
        batch_size: int,
    ):
        """Fetch, normalize and write one source; every failure stays here"""
        async with self.session_factory() as session:
            tracker = JobTracker(session)
            try:
                # --------------------------------------------------
                # PHASE 1: START
                # --------------------------------------------------
                if await tracker.is_cancelled(bulk_job_id):
                    logger.info(f"{source}: bulk job {bulk_job_id} cancelled, not starting")
                    await tracker.fail_job(ImportJob, source_job_id, CANCELLED_MESSAGE)
                    return

                await tracker.transition(ImportJob, source_job_id, JobStatus.PROCESSING)

                if adapter is None:
                    raise UnknownSourceError(
                        f"Unknown trail source '{source}'",
                        context={"source": source},
                    )

                # --------------------------------------------------
                # PHASE 2: FETCH
                # --------------------------------------------------
                raw_records = await adapter.fetch(
                    request.max_trails_per_source, location=request.location
                )
                logger.info(f"{source}: fetched {len(raw_records)} raw records")

                # --------------------------------------------------
                # PHASE 3: NORMALIZE
                # --------------------------------------------------
                outcome = normalize_many(raw_records, source)
                writer = BatchWriter(session, source_job_id, bulk_job_id)
                await writer.record_failures(outcome.failed)

                # --------------------------------------------------
                # PHASE 4: WRITE
                # --------------------------------------------------
                for batch in split_batches(outcome.trails, batch_size):
                    if await tracker.is_cancelled(bulk_job_id):
                        logger.info(f"{source}: bulk job {bulk_job_id} cancelled, stopping")
                        break
                    result = await writer.write_batch(list(batch))
                    logger.info(
                        f"{source}: batch of {len(batch)} -> added={result.added}, "
                        f"updated={result.updated}, failed={result.failed}"
                    )

                # --------------------------------------------------
                # PHASE 5: FINALIZE SOURCE
                # --------------------------------------------------
                job = await tracker.finalize_source_job(source_job_id)
                logger.info(
                    f"{source}: {job.status.value} (processed={job.trails_processed}, "
                    f"added={job.trails_added}, updated={job.trails_updated}, "
                    f"failed={job.trails_failed})"
                )

            except Exception as e:
                # Per-source boundary: record and let the other sources continue
                await session.rollback()
                message = e.message if isinstance(e, ImportPipelineError) else f"{type(e).__name__}: {e}"
                context = e.to_dict() if isinstance(e, ImportPipelineError) else {"error": str(e)}
                logger.error(
                    f"{source}: import failed: {message}",
                    extra={"error_context": context},
                    exc_info=not isinstance(e, ImportPipelineError),
                )
                try:
                    await tracker.fail_job(ImportJob, source_job_id, message)
                except SQLAlchemyError as db_error:
                    await session.rollback()
                    logger.error(f"{source}: could not record failure on job {source_job_id}: {db_error}")
