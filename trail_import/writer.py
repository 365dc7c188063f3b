"""
Write normalized trails into the store with upsert logic (idempotency)
"""

from typing import List, Optional, Dict, Iterator, Sequence, Set
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID
import uuid
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects import postgresql, sqlite

from models.trail import Trail
from schemas.normalized import NormalizedTrail
from trail_import.jobs import JobTracker
from core.exceptions import BatchWriteError

logger = logging.getLogger(__name__)

MIN_BATCH_SIZE = 25
MAX_BATCH_SIZE = 1000

# Never overwritten on conflict
_INSERT_ONLY_COLUMNS = {"id", "source_id", "created_at"}


def clamp_batch_size(batch_size: Optional[int], default: int) -> int:
    size = batch_size or default
    return max(MIN_BATCH_SIZE, min(MAX_BATCH_SIZE, size))


def split_batches(items: Sequence, batch_size: int) -> Iterator[Sequence]:
    for i in range(0, len(items), batch_size):
        yield items[i:i + batch_size]


@dataclass
class BatchResult:
    """Outcome of one or more batch writes"""
    added: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.added + self.updated + self.failed

    def __add__(self, other: "BatchResult") -> "BatchResult":
        return BatchResult(
            added=self.added + other.added,
            updated=self.updated + other.updated,
            failed=self.failed + other.failed,
        )


class BatchWriter:
    """
    Upsert NormalizedTrail batches keyed on ``source_id``.

    Ensures:
    - No duplicate rows on repeated runs
    - Existing rows are updated in place
    - Job counters change in the same transaction as the trails they count
    """

    def __init__(
        self,
        db_session: AsyncSession,
        source_job_id: Optional[UUID] = None,
        bulk_job_id: Optional[UUID] = None,
    ):
        self.db = db_session
        self.source_job_id = source_job_id
        self.bulk_job_id = bulk_job_id
        self.tracker = JobTracker(db_session)

    def _insert(self):
        """INSERT construct supporting ON CONFLICT for the bound dialect"""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(Trail)
        if dialect == "sqlite":
            return sqlite.insert(Trail)
        raise BatchWriteError(
            f"Upsert is not supported on dialect '{dialect}'",
            context={"dialect": dialect, "table_name": "trails"},
        )

    async def _existing_ids(self, source_ids: List[str]) -> Set[str]:
        result = await self.db.execute(
            select(Trail.source_id).where(Trail.source_id.in_(source_ids))
        )
        return set(result.scalars().all())

    async def write_batch(self, trails: List[NormalizedTrail]) -> BatchResult:
        """
        Upsert one batch and increment job counters in the same transaction.

        Duplicates inside the batch collapse to their last occurrence and
        count as updated. A failed write attributes the whole batch as
        failed and commits that count separately.

        Returns:
            BatchResult with added/updated/failed summing to ``len(trails)``

        Raises:
            BatchWriteError: even the failure count could not be recorded
        """
        if not trails:
            return BatchResult()

        unique: Dict[str, NormalizedTrail] = {}
        for trail in trails:
            unique[trail.source_id] = trail
        duplicates = len(trails) - len(unique)

        try:
            existing = await self._existing_ids(list(unique))

            now = datetime.utcnow()
            rows = []
            for trail in unique.values():
                row = trail.to_row()
                row["id"] = uuid.uuid4()
                row["last_import_job_id"] = self.source_job_id
                row["created_at"] = now
                row["updated_at"] = now
                rows.append(row)

            stmt = self._insert().values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["source_id"],
                set_={
                    key: stmt.excluded[key]
                    for key in rows[0]
                    if key not in _INSERT_ONLY_COLUMNS
                },
            )
            await self.db.execute(stmt)

            added = sum(1 for source_id in unique if source_id not in existing)
            result = BatchResult(
                added=added,
                updated=len(unique) - added + duplicates,
                failed=0,
            )

            await self.tracker.increment(
                self.source_job_id,
                self.bulk_job_id,
                processed=len(trails),
                added=result.added,
                updated=result.updated,
            )
            await self.db.commit()

        except SQLAlchemyError as e:
            await self.db.rollback()
            error = BatchWriteError(
                "Batch upsert failed",
                context={
                    "batch_size": len(trails),
                    "table_name": "trails",
                    "job_id": str(self.source_job_id) if self.source_job_id else None,
                },
                original_exception=e,
            )
            logger.error(
                f"Batch of {len(trails)} trails failed: {e}",
                extra={"error_context": error.to_dict()},
            )
            await self.record_failures(len(trails), cause=error)
            return BatchResult(failed=len(trails))

        logger.debug(
            f"Batch written: {result.added} added, {result.updated} updated "
            f"({duplicates} in-batch duplicates)"
        )
        return result

    async def record_failures(self, count: int, cause: Optional[Exception] = None) -> BatchResult:
        """
        Count records that never reached the store (normalization rejects,
        failed batches) as processed and failed.
        """
        if count <= 0:
            return BatchResult()
        try:
            await self.tracker.increment(
                self.source_job_id,
                self.bulk_job_id,
                processed=count,
                failed=count,
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise BatchWriteError(
                "Failed to record failed trail count",
                context={"failed": count, "job_id": str(self.source_job_id)},
                original_exception=cause or e,
            )
        return BatchResult(failed=count)

    async def write(self, trails: List[NormalizedTrail], batch_size: int) -> BatchResult:
        """Write ``trails`` in consecutive batches of at most ``batch_size``"""
        total = BatchResult()
        for batch in split_batches(trails, batch_size):
            total = total + await self.write_batch(list(batch))
        return total
