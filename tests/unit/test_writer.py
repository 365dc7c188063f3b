"""
Unit tests for the batch writer
"""

import pytest
import pytest_asyncio
from unittest.mock import patch
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from models.trail import Trail
from schemas.imports import ImportRequest
from trail_import.jobs import JobTracker
from trail_import.normalizer import normalize
from trail_import.writer import BatchWriter, BatchResult, clamp_batch_size, split_batches
from tests.factories import hp_record


@pytest_asyncio.fixture
async def jobs(db_session):
    """Bulk job with one hiking_project source job"""
    tracker = JobTracker(db_session)
    bulk, _ = await tracker.create_bulk_job(
        ImportRequest(sources=["hiking_project"], max_trails_per_source=100)
    )
    source_job = await tracker.create_source_job(bulk.id, "hiking_project", 100)
    return bulk.id, source_job.id


def trails(count, start=0, **overrides):
    return [normalize(hp_record(i, **overrides), "hiking_project") for i in range(start, start + count)]


async def trail_count(db_session) -> int:
    return (await db_session.execute(select(func.count(Trail.id)))).scalar()


class TestBatchWriter:
    """Tests for BatchWriter"""

    @pytest.mark.asyncio
    async def test_insert_new_trails(self, db_session, jobs):
        """New source ids are counted as added"""
        bulk_id, source_job_id = jobs
        writer = BatchWriter(db_session, source_job_id, bulk_id)

        result = await writer.write_batch(trails(3))

        assert result == BatchResult(added=3, updated=0, failed=0)
        assert await trail_count(db_session) == 3

        row = (await db_session.execute(
            select(Trail).where(Trail.source_id == "hp-7000001")
        )).scalar_one()
        assert row.source == "hiking_project"
        assert row.last_import_job_id == source_job_id
        assert "hiking" in row.tags

    @pytest.mark.asyncio
    async def test_rewrite_is_idempotent(self, db_session, jobs):
        """Writing the same batch twice updates in place"""
        bulk_id, source_job_id = jobs
        writer = BatchWriter(db_session, source_job_id, bulk_id)

        await writer.write_batch(trails(3))
        result = await writer.write_batch(trails(3, name="Renamed"))

        assert result == BatchResult(added=0, updated=3, failed=0)
        assert await trail_count(db_session) == 3

        names = (await db_session.execute(select(Trail.name))).scalars().all()
        assert set(names) == {"Renamed"}

    @pytest.mark.asyncio
    async def test_in_batch_duplicates_collapse(self, db_session, jobs):
        """The last occurrence wins and duplicates count as updated"""
        bulk_id, source_job_id = jobs
        writer = BatchWriter(db_session, source_job_id, bulk_id)

        batch = trails(2) + trails(1, name="Last Version")
        result = await writer.write_batch(batch)

        assert result.added == 2
        assert result.updated == 1
        assert result.processed == 3
        assert await trail_count(db_session) == 2

        name = (await db_session.execute(
            select(Trail.name).where(Trail.source_id == "hp-7000000")
        )).scalar_one()
        assert name == "Last Version"

    @pytest.mark.asyncio
    async def test_counters_follow_writes(self, db_session, jobs):
        bulk_id, source_job_id = jobs
        writer = BatchWriter(db_session, source_job_id, bulk_id)

        await writer.write_batch(trails(3))
        await writer.write_batch(trails(2, start=2))

        tracker = JobTracker(db_session)
        for job in (await tracker.get_source_job(source_job_id), await tracker.get_bulk_job(bulk_id)):
            assert job.trails_processed == 5
            assert job.trails_added == 4
            assert job.trails_updated == 1
            assert job.trails_failed == 0
            assert job.counters_balanced

    @pytest.mark.asyncio
    async def test_failed_batch_counts_every_record(self, db_session, jobs):
        """A store failure attributes the whole batch as failed"""
        bulk_id, source_job_id = jobs
        writer = BatchWriter(db_session, source_job_id, bulk_id)

        with patch.object(
            BatchWriter,
            "_existing_ids",
            side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
        ):
            result = await writer.write_batch(trails(4))

        assert result == BatchResult(added=0, updated=0, failed=4)
        assert await trail_count(db_session) == 0

        job = await JobTracker(db_session).get_source_job(source_job_id)
        assert job.trails_processed == 4
        assert job.trails_failed == 4

    @pytest.mark.asyncio
    async def test_write_splits_batches(self, db_session, jobs):
        bulk_id, source_job_id = jobs
        writer = BatchWriter(db_session, source_job_id, bulk_id)

        result = await writer.write(trails(60), batch_size=25)

        assert result.added == 60
        assert await trail_count(db_session) == 60

    @pytest.mark.asyncio
    async def test_empty_batch_is_noop(self, db_session, jobs):
        bulk_id, source_job_id = jobs
        writer = BatchWriter(db_session, source_job_id, bulk_id)

        assert await writer.write_batch([]) == BatchResult()
        assert await writer.record_failures(0) == BatchResult()

        job = await JobTracker(db_session).get_source_job(source_job_id)
        assert job.trails_processed == 0

    @pytest.mark.asyncio
    async def test_record_failures(self, db_session, jobs):
        bulk_id, source_job_id = jobs
        writer = BatchWriter(db_session, source_job_id, bulk_id)

        await writer.record_failures(7)

        job = await JobTracker(db_session).get_bulk_job(bulk_id)
        assert job.trails_processed == 7
        assert job.trails_failed == 7


class TestBatching:
    """Tests for batch sizing helpers"""

    @pytest.mark.parametrize("requested,expected", [
        (None, 500),
        (5, 25),
        (100, 100),
        (5000, 1000),
    ])
    def test_clamp_batch_size(self, requested, expected):
        assert clamp_batch_size(requested, 500) == expected

    def test_split_batches(self):
        sizes = [len(b) for b in split_batches(list(range(60)), 25)]
        assert sizes == [25, 25, 10]

    def test_result_addition(self):
        total = BatchResult(added=2, updated=1) + BatchResult(failed=3)
        assert total == BatchResult(added=2, updated=1, failed=3)
        assert total.processed == 6
