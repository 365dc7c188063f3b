import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import Settings, settings as default_settings
from core.exceptions import ImportPipelineError
from schemas.imports import ImportRequest
from trail_import.orchestrator import ImportOrchestrator

logger = logging.getLogger(__name__)


class ImportScheduler:
    """Run the configured refresh import on an interval"""

    JOB_ID = "trail_refresh_import"

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings = default_settings,
        orchestrator: Optional[ImportOrchestrator] = None,
    ):
        self.settings = settings
        self.scheduler = AsyncIOScheduler()
        self.orchestrator = orchestrator or ImportOrchestrator(session_factory, settings=settings)

    def build_request(self) -> ImportRequest:
        return ImportRequest(
            sources=list(self.settings.IMPORT_SCHEDULED_SOURCES),
            max_trails_per_source=self.settings.MAX_TRAILS_PER_SOURCE,
        )

    async def run_import_job(self):
        """Job to run the refresh import"""
        request = self.build_request()
        logger.info(f"Scheduler: starting refresh import for {request.sources}")
        try:
            job, created = await self.orchestrator.execute(request)
        except ImportPipelineError as e:
            logger.error(
                f"Scheduler: refresh import failed - {e.message}",
                extra={"error_context": e.to_dict()},
            )
            return None

        if not created:
            logger.info(f"Scheduler: refresh import already running as job {job.id}")
        else:
            logger.info(
                f"Scheduler: refresh import {job.id} {job.status.value} "
                f"(added={job.trails_added}, updated={job.trails_updated}, failed={job.trails_failed})"
            )
        return job

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_import_job,
            trigger=IntervalTrigger(minutes=self.settings.IMPORT_SCHEDULE_INTERVAL_MINUTES),
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(
            f"Import scheduler started (every {self.settings.IMPORT_SCHEDULE_INTERVAL_MINUTES} minutes)"
        )

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Import scheduler stopped")
