"""
Integration tests for the full import pipeline: fetch -> normalize -> write -> finalize
"""

from datetime import datetime, timedelta
import pytest
from sqlalchemy import select, func, update

from core.exceptions import NetworkError
from models.base import JobStatus
from models.import_job import BulkImportJob, ImportJob
from models.trail import Trail
from schemas.imports import ImportRequest, LocationFilter
from trail_import.jobs import JobTracker, CANCELLED_MESSAGE, ZERO_TRAILS_MESSAGE, STALE_MESSAGE
from trail_import.orchestrator import ImportOrchestrator, clamp_concurrency
from tests.factories import StaticAdapter, hp_records, usgs_records, osm_records


ALL_SOURCES = ["hiking_project", "openstreetmap", "usgs"]


async def count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(model.id)))).scalar()


def source_jobs_by_name(job):
    return {child.source: child for child in job.source_jobs}


class TestImportPipeline:
    """End-to-end orchestrator runs against the test database"""

    @pytest.mark.asyncio
    async def test_one_productive_source_completes(self, session_factory, test_settings):
        """Two empty sources and one with 50 valid trails"""
        adapters = {
            "hiking_project": StaticAdapter("hiking_project", []),
            "openstreetmap": StaticAdapter("openstreetmap", []),
            "usgs": StaticAdapter("usgs", usgs_records(50)),
        }
        orchestrator = ImportOrchestrator(session_factory, adapters=adapters, settings=test_settings)

        job, created = await orchestrator.execute(
            ImportRequest(sources=ALL_SOURCES, max_trails_per_source=100)
        )

        assert created
        assert job.status == JobStatus.COMPLETED
        assert job.trails_processed == 50
        assert job.trails_added == 50
        assert job.trails_updated == 0
        assert job.trails_failed == 0
        assert job.total_trails_requested == 300
        assert job.completed_at is not None
        assert not job.source_errors

        children = source_jobs_by_name(job)
        assert set(children) == set(ALL_SOURCES)
        assert all(child.status == JobStatus.COMPLETED for child in children.values())
        assert children["usgs"].trails_added == 50
        assert children["hiking_project"].trails_processed == 0

        assert await count(session_factory, Trail) == 50

    @pytest.mark.asyncio
    async def test_counters_balance_with_failures(self, session_factory, test_settings):
        """Rejected records and a failed source still balance the counters"""
        records = hp_records(10) + [
            hp_records(1, start=50, latitude=0, longitude=0)[0],
            hp_records(1, start=51, latitude=None)[0],
        ]
        adapters = {
            "hiking_project": StaticAdapter("hiking_project", records),
            "openstreetmap": StaticAdapter(
                "openstreetmap", error=NetworkError("Network error after 3 attempts")
            ),
        }
        orchestrator = ImportOrchestrator(session_factory, adapters=adapters, settings=test_settings)

        job, _ = await orchestrator.execute(
            ImportRequest(sources=["hiking_project", "openstreetmap"], max_trails_per_source=100)
        )

        assert job.status == JobStatus.COMPLETED
        assert job.trails_processed == 12
        assert job.trails_added == 10
        assert job.trails_failed == 2
        assert job.counters_balanced
        assert job.source_errors == {"openstreetmap": "Network error after 3 attempts"}

        children = source_jobs_by_name(job)
        assert children["openstreetmap"].status == JobStatus.ERROR
        assert children["hiking_project"].status == JobStatus.COMPLETED
        for child in children.values():
            assert child.counters_balanced

    @pytest.mark.asyncio
    async def test_all_sources_failing_is_error(self, session_factory, test_settings):
        adapters = {
            "hiking_project": StaticAdapter("hiking_project", error=NetworkError("unreachable")),
            "usgs": StaticAdapter("usgs", error=RuntimeError("unexpected payload")),
        }
        orchestrator = ImportOrchestrator(session_factory, adapters=adapters, settings=test_settings)

        job, _ = await orchestrator.execute(
            ImportRequest(sources=["hiking_project", "usgs"], max_trails_per_source=10)
        )

        assert job.status == JobStatus.ERROR
        assert job.error_message == ZERO_TRAILS_MESSAGE
        assert set(job.source_errors) == {"hiking_project", "usgs"}
        assert job.source_errors["usgs"] == "RuntimeError: unexpected payload"
        assert await count(session_factory, Trail) == 0

    @pytest.mark.asyncio
    async def test_unknown_source_fails_alone(self, session_factory, test_settings):
        adapters = {"hiking_project": StaticAdapter("hiking_project", hp_records(5))}
        orchestrator = ImportOrchestrator(session_factory, adapters=adapters, settings=test_settings)

        job, _ = await orchestrator.execute(
            ImportRequest(sources=["hiking_project", "alltrails"], max_trails_per_source=10)
        )

        assert job.status == JobStatus.COMPLETED
        assert "alltrails" in job.source_errors
        assert source_jobs_by_name(job)["alltrails"].status == JobStatus.ERROR

    @pytest.mark.asyncio
    async def test_duplicate_trigger_returns_same_job(self, session_factory, test_settings):
        """A second trigger for an active target gets the existing job"""
        orchestrator = ImportOrchestrator(
            session_factory,
            adapters={"usgs": StaticAdapter("usgs", usgs_records(3))},
            settings=test_settings,
        )
        request = ImportRequest(sources=["usgs"], max_trails_per_source=10)

        first, created_first = await orchestrator.start(request)
        second, created_second = await orchestrator.start(request)

        assert created_first
        assert not created_second
        assert second.id == first.id
        assert await count(session_factory, BulkImportJob) == 1
        assert await count(session_factory, ImportJob) == 1

    @pytest.mark.asyncio
    async def test_rerun_updates_in_place(self, session_factory, test_settings):
        """Importing the same records again adds nothing"""
        adapters = {"hiking_project": StaticAdapter("hiking_project", hp_records(30))}
        orchestrator = ImportOrchestrator(session_factory, adapters=adapters, settings=test_settings)
        request = ImportRequest(sources=["hiking_project"], max_trails_per_source=100, batch_size=25)

        first, _ = await orchestrator.execute(request)
        second, created = await orchestrator.execute(request)

        assert created
        assert second.id != first.id
        assert first.trails_added == 30
        assert second.trails_added == 0
        assert second.trails_updated == 30
        assert second.status == JobStatus.COMPLETED
        assert await count(session_factory, Trail) == 30

    @pytest.mark.asyncio
    async def test_max_trails_and_location_reach_adapter(self, session_factory, test_settings):
        adapter = StaticAdapter("openstreetmap", osm_records(40))
        orchestrator = ImportOrchestrator(
            session_factory, adapters={"openstreetmap": adapter}, settings=test_settings
        )
        location = LocationFilter(lat=39.5, lng=-106.0, radius=30, city="Vail", state="CO")

        job, _ = await orchestrator.execute(
            ImportRequest(sources=["openstreetmap"], max_trails_per_source=15, location=location)
        )

        assert adapter.calls == [{"limit": 15, "location": location}]
        assert job.trails_added == 15
        assert job.target_key == "openstreetmap@vail,co"

    @pytest.mark.asyncio
    async def test_cancel_during_run_stops_writes(self, session_factory, test_settings):
        request = ImportRequest(
            sources=["hiking_project", "usgs"], max_trails_per_source=100, concurrency=1
        )

        class CancellingAdapter(StaticAdapter):
            async def fetch(self, limit, location=None):
                async with session_factory() as session:
                    tracker = JobTracker(session)
                    job = await tracker.find_active_job(request.target_key())
                    await tracker.cancel(job.id)
                return await super().fetch(limit, location)

        usgs_adapter = StaticAdapter("usgs", usgs_records(10))
        orchestrator = ImportOrchestrator(
            session_factory,
            adapters={
                "hiking_project": CancellingAdapter("hiking_project", hp_records(10)),
                "usgs": usgs_adapter,
            },
            settings=test_settings,
        )

        job, _ = await orchestrator.execute(request)

        assert job.status == JobStatus.ERROR
        assert job.error_message == CANCELLED_MESSAGE
        assert usgs_adapter.calls == []
        assert all(child.status == JobStatus.ERROR for child in job.source_jobs)
        assert await count(session_factory, Trail) == 0

    @pytest.mark.asyncio
    async def test_stale_job_does_not_block_new_run(self, session_factory, test_settings):
        request = ImportRequest(sources=["usgs"], max_trails_per_source=10)
        async with session_factory() as session:
            stale, _ = await JobTracker(session).create_bulk_job(request)
            await session.execute(
                update(BulkImportJob)
                .where(BulkImportJob.id == stale.id)
                .values(last_updated=datetime.utcnow() - timedelta(hours=5))
            )
            await session.commit()

        orchestrator = ImportOrchestrator(
            session_factory,
            adapters={"usgs": StaticAdapter("usgs", usgs_records(2))},
            settings=test_settings,
        )
        job, created = await orchestrator.execute(request)

        assert created
        assert job.id != stale.id
        assert job.status == JobStatus.COMPLETED

        async with session_factory() as session:
            stale = await JobTracker(session).get_bulk_job(stale.id)
        assert stale.status == JobStatus.ERROR
        assert stale.error_message == STALE_MESSAGE

    @pytest.mark.asyncio
    async def test_concurrent_sources_share_counters(self, session_factory, test_settings):
        """Workers running in parallel never lose counter updates"""
        adapters = {
            "hiking_project": StaticAdapter("hiking_project", hp_records(60)),
            "openstreetmap": StaticAdapter("openstreetmap", osm_records(60)),
            "usgs": StaticAdapter("usgs", usgs_records(60)),
        }
        orchestrator = ImportOrchestrator(session_factory, adapters=adapters, settings=test_settings)

        job, _ = await orchestrator.execute(
            ImportRequest(sources=ALL_SOURCES, max_trails_per_source=60, batch_size=25, concurrency=3)
        )

        assert job.status == JobStatus.COMPLETED
        assert job.trails_processed == 180
        assert job.trails_added == 180
        assert job.counters_balanced
        assert sum(child.trails_added for child in job.source_jobs) == 180

    def test_clamp_concurrency(self):
        assert clamp_concurrency(None, 3) == 3
        assert clamp_concurrency(0, 3) == 3
        assert clamp_concurrency(50, 3) == 6
