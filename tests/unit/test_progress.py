"""
Unit tests for progress reporting
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock
import uuid

import httpx
import pytest

from models.base import JobStatus
from schemas.imports import ImportRequest
from trail_import.jobs import JobTracker
from trail_import.progress import (
    ProgressReporter,
    compute_progress,
    estimate_eta,
    http_fetcher,
)

STARTED = datetime(2026, 5, 1, 12, 0, 0)


def payload(status="processing", processed=0, requested=1000, started_at=STARTED):
    return {
        "status": status,
        "total_trails_requested": requested,
        "trails_processed": processed,
        "trails_added": processed,
        "trails_updated": 0,
        "trails_failed": 0,
        "started_at": started_at,
    }


class SequenceFetcher:
    """Returns the given payloads in order, repeating the last one"""

    def __init__(self, payloads):
        self.payloads = list(payloads)
        self.calls = 0

    async def __call__(self, job_id):
        self.calls += 1
        if len(self.payloads) > 1:
            return self.payloads.pop(0)
        return self.payloads[0]


class FakeClock:
    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


def make_reporter(fetch, clock=None, now_offset=60, **kwargs):
    clock = clock or FakeClock()

    async def sleep(seconds):
        clock.value += seconds

    return ProgressReporter(
        fetch,
        poll_interval=kwargs.pop("poll_interval", 5.0),
        max_duration=kwargs.pop("max_duration", 3600.0),
        sleep=sleep,
        clock=clock,
        now=lambda: STARTED + timedelta(seconds=now_offset),
    )


class TestCalculations:
    """Tests for percent and ETA"""

    @pytest.mark.parametrize("processed,requested,expected", [
        (0, 1000, 0.0),
        (250, 1000, 25.0),
        (1000, 1000, 100.0),
        (1500, 1000, 100.0),
        (10, 0, 0.0),
    ])
    def test_compute_progress(self, processed, requested, expected):
        assert compute_progress(processed, requested) == expected

    def test_eta_linear(self):
        """250 of 1000 in 60s leaves 180s at the same rate"""
        assert estimate_eta(250, 1000, 60.0) == pytest.approx(180.0)

    def test_eta_unknown_before_progress(self):
        assert estimate_eta(0, 1000, 60.0) is None
        assert estimate_eta(10, 1000, 0.0) is None

    def test_eta_zero_when_done(self):
        assert estimate_eta(1200, 1000, 30.0) == 0.0


class TestReporter:
    """Tests for ProgressReporter"""

    @pytest.mark.asyncio
    async def test_snapshot(self):
        reporter = make_reporter(SequenceFetcher([payload(processed=250)]))

        snap = await reporter.snapshot(uuid.uuid4())

        assert snap.percent == 25.0
        assert snap.elapsed_seconds == 60.0
        assert snap.eta_seconds == pytest.approx(180.0)
        assert not snap.done

    @pytest.mark.asyncio
    async def test_iso_started_at(self):
        reporter = make_reporter(
            SequenceFetcher([payload(processed=500, started_at="2026-05-01T12:00:00Z")])
        )
        snap = await reporter.snapshot(uuid.uuid4())
        assert snap.elapsed_seconds == 60.0

    @pytest.mark.asyncio
    async def test_stops_on_terminal_status(self):
        fetch = SequenceFetcher([
            payload(processed=100),
            payload(processed=400),
            payload(status="error", processed=400),
        ])
        reporter = make_reporter(fetch)
        updates = []

        final = await reporter.watch(uuid.uuid4(), on_update=updates.append)

        assert [s.processed for s in updates] == [100, 400, 400]
        assert final.status == JobStatus.ERROR
        assert final.done
        assert fetch.calls == 3

    @pytest.mark.asyncio
    async def test_stops_at_full_progress(self):
        """100% ends the watch even before the status turns terminal"""
        fetch = SequenceFetcher([payload(processed=500), payload(processed=1000)])
        final = await make_reporter(fetch).watch(uuid.uuid4())

        assert final.percent == 100.0
        assert final.status == JobStatus.PROCESSING
        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_times_out(self):
        fetch = SequenceFetcher([payload(processed=10)])
        reporter = make_reporter(fetch, poll_interval=10.0, max_duration=30.0)

        final = await reporter.watch(uuid.uuid4())

        assert final.timed_out
        assert not final.done
        assert fetch.calls == 4

    @pytest.mark.asyncio
    async def test_from_store(self, session_factory):
        async with session_factory() as session:
            job, _ = await JobTracker(session).create_bulk_job(
                ImportRequest(sources=["usgs"], max_trails_per_source=40)
            )

        reporter = ProgressReporter.from_store(session_factory, sleep=AsyncMock())
        snap = await reporter.snapshot(job.id)

        assert snap.status == JobStatus.QUEUED
        assert snap.requested == 40
        assert snap.percent == 0.0
        assert snap.eta_seconds is None

    @pytest.mark.asyncio
    async def test_http_fetcher(self):
        job_id = uuid.uuid4()
        seen = []

        def handler(request: httpx.Request):
            seen.append(request)
            return httpx.Response(200, json={
                "id": str(job_id),
                "status": "completed",
                "targetKey": "usgs",
                "startedAt": "2026-05-01T12:00:00",
                "totalTrailsRequested": 40,
                "totalSources": 1,
                "trailsProcessed": 40,
                "trailsAdded": 38,
                "trailsUpdated": 0,
                "trailsFailed": 2,
            })

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetch = http_fetcher("http://api.test/", client=client, api_key="secret")
            data = await fetch(job_id)

        assert seen[0].url.path == f"/imports/jobs/{job_id}"
        assert seen[0].headers["X-API-Key"] == "secret"
        assert data["status"] == JobStatus.COMPLETED
        assert data["trails_failed"] == 2
