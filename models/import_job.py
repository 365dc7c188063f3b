from sqlalchemy import Column, Integer, String, DateTime, Text, Index, ForeignKey, Uuid, text
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, JobStatus, JSONType, value_enum


class JobCountersMixin:
    """Status and counter columns shared by per-source and bulk jobs"""

    status = Column(value_enum(JobStatus), default=JobStatus.QUEUED, nullable=False, index=True)

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    last_updated = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Fixed at creation
    total_trails_requested = Column(Integer, nullable=False, default=0)
    total_sources = Column(Integer, nullable=False, default=1)

    # Monotonic counters, only ever incremented in SQL
    trails_processed = Column(Integer, nullable=False, default=0)
    trails_added = Column(Integer, nullable=False, default=0)
    trails_updated = Column(Integer, nullable=False, default=0)
    trails_failed = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)

    @property
    def counters_balanced(self) -> bool:
        return self.trails_processed == (
            self.trails_added + self.trails_updated + self.trails_failed
        )


class BulkImportJob(JobCountersMixin, Base):
    """
    One orchestration request spanning one or more sources.

    Purpose:
    - Aggregate progress across every source of a request
    - Guard against duplicate concurrent runs for the same target
    - Audit trail of import runs (never deleted by the pipeline)
    """
    __tablename__ = "bulk_import_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Logical import target: sorted sources plus optional location
    target_key = Column(String(500), nullable=False, index=True)

    config = Column(JSONType, nullable=True)  # Request snapshot
    source_errors = Column(JSONType, nullable=True)  # {source: message}

    source_jobs = relationship(
        "ImportJob",
        back_populates="bulk_job",
        order_by="ImportJob.started_at",
        lazy="selectin",
    )

    __table_args__ = (
        # At most one active job per target
        Index(
            "uq_bulk_import_active_target",
            "target_key",
            unique=True,
            postgresql_where=text("status IN ('queued', 'processing')"),
            sqlite_where=text("status IN ('queued', 'processing')"),
        ),
        Index("idx_bulk_import_status_started", "status", "started_at"),
    )


class ImportJob(JobCountersMixin, Base):
    """
    Progress of a single source inside a bulk import.
    """
    __tablename__ = "import_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bulk_job_id = Column(Uuid, ForeignKey("bulk_import_jobs.id"), nullable=True, index=True)
    source = Column(String(50), nullable=False, index=True)

    bulk_job = relationship("BulkImportJob", back_populates="source_jobs")

    __table_args__ = (
        Index("idx_import_job_source_started", "source", "started_at"),
    )
