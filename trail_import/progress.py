"""
Read-side progress reporting for bulk import jobs.

The reporter polls a job record through a pluggable fetch function (the
store directly, or the job status endpoint over HTTP), derives percent
complete and an ETA by linear extrapolation, and stops on a terminal
status, at 100%, or after the maximum watch duration.
"""

from typing import Optional, Dict, Any, Callable, Awaitable, AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID
import asyncio
import time
import logging

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from models.base import JobStatus
from schemas.imports import BulkImportJobResponse
from trail_import.jobs import JobTracker

logger = logging.getLogger(__name__)

JobFetcher = Callable[[UUID], Awaitable[Dict[str, Any]]]


def compute_progress(processed: int, requested: int) -> float:
    """Percent of requested trails processed, capped at 100"""
    if requested <= 0:
        return 0.0
    return min(100.0, processed / requested * 100.0)


def estimate_eta(processed: int, requested: int, elapsed_seconds: float) -> Optional[float]:
    """Seconds remaining at the average rate so far, None before any progress"""
    if processed <= 0 or elapsed_seconds <= 0:
        return None
    remaining = max(requested - processed, 0)
    rate = processed / elapsed_seconds
    return remaining / rate


@dataclass
class ProgressSnapshot:
    job_id: UUID
    status: JobStatus
    processed: int
    requested: int
    added: int
    updated: int
    failed: int
    percent: float
    eta_seconds: Optional[float]
    elapsed_seconds: float
    timed_out: bool = False

    @property
    def done(self) -> bool:
        return self.status.is_terminal or self.percent >= 100.0


def job_payload(job) -> Dict[str, Any]:
    """Fields the reporter reads from a BulkImportJob (ORM row or response)"""
    return {
        "status": job.status,
        "total_trails_requested": job.total_trails_requested,
        "trails_processed": job.trails_processed,
        "trails_added": job.trails_added,
        "trails_updated": job.trails_updated,
        "trails_failed": job.trails_failed,
        "started_at": job.started_at,
    }


def store_fetcher(session_factory: async_sessionmaker) -> JobFetcher:
    """Read the job straight from the store"""
    async def fetch(job_id: UUID) -> Dict[str, Any]:
        async with session_factory() as session:
            job = await JobTracker(session).get_bulk_job(job_id)
            return job_payload(job)
    return fetch


def http_fetcher(base_url: str, client: Optional[httpx.AsyncClient] = None, api_key: Optional[str] = None) -> JobFetcher:
    """Read the job from the status endpoint"""
    headers = {"X-API-Key": api_key} if api_key else {}

    async def fetch(job_id: UUID) -> Dict[str, Any]:
        url = f"{base_url.rstrip('/')}/imports/jobs/{job_id}"
        if client is not None:
            response = await client.get(url, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as own_client:
                response = await own_client.get(url, headers=headers)
        response.raise_for_status()
        return job_payload(BulkImportJobResponse.model_validate(response.json()))
    return fetch


class ProgressReporter:
    """
    Poll a bulk import job until it is done.

    Usage:
        reporter = ProgressReporter.from_store(async_session_maker)
        final = await reporter.watch(job_id, on_update=print)
    """

    def __init__(
        self,
        fetch: JobFetcher,
        poll_interval: float = settings.PROGRESS_POLL_INTERVAL_SECONDS,
        max_duration: float = settings.PROGRESS_MAX_DURATION_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.fetch = fetch
        self.poll_interval = poll_interval
        self.max_duration = max_duration
        self._sleep = sleep
        self._clock = clock
        self._now = now

    @classmethod
    def from_store(cls, session_factory: async_sessionmaker, **kwargs) -> "ProgressReporter":
        return cls(store_fetcher(session_factory), **kwargs)

    @classmethod
    def from_http(
        cls,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        **kwargs,
    ) -> "ProgressReporter":
        return cls(http_fetcher(base_url, client=client, api_key=api_key), **kwargs)

    async def snapshot(self, job_id: UUID) -> ProgressSnapshot:
        data = await self.fetch(job_id)

        processed = data["trails_processed"]
        requested = data["total_trails_requested"]
        started_at = data.get("started_at")
        if isinstance(started_at, str):
            started_at = datetime.fromisoformat(started_at.replace("Z", "+00:00")).replace(tzinfo=None)
        elapsed = (self._now() - started_at).total_seconds() if started_at else 0.0

        return ProgressSnapshot(
            job_id=job_id,
            status=JobStatus(data["status"]),
            processed=processed,
            requested=requested,
            added=data["trails_added"],
            updated=data["trails_updated"],
            failed=data["trails_failed"],
            percent=compute_progress(processed, requested),
            eta_seconds=estimate_eta(processed, requested, elapsed),
            elapsed_seconds=max(elapsed, 0.0),
        )

    async def poll(self, job_id: UUID) -> AsyncIterator[ProgressSnapshot]:
        """Yield snapshots until the job is done or the watch times out"""
        started = self._clock()
        while True:
            snap = await self.snapshot(job_id)
            if not snap.done and self._clock() - started >= self.max_duration:
                snap.timed_out = True
                logger.warning(
                    f"Stopped watching job {job_id} after {self.max_duration:.0f}s "
                    f"at {snap.percent:.1f}%"
                )
            yield snap
            if snap.done or snap.timed_out:
                return
            await self._sleep(self.poll_interval)

    async def watch(
        self,
        job_id: UUID,
        on_update: Optional[Callable[[ProgressSnapshot], Any]] = None,
    ) -> ProgressSnapshot:
        """Poll to the end, reporting every snapshot; returns the last one"""
        last = None
        async for snap in self.poll(job_id):
            last = snap
            if on_update is not None:
                on_update(snap)
            eta = f", eta {snap.eta_seconds:.0f}s" if snap.eta_seconds is not None else ""
            logger.info(
                f"Job {job_id}: {snap.status.value} {snap.percent:.1f}% "
                f"({snap.processed}/{snap.requested}{eta})"
            )
        return last
