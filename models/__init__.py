"""
SQLAlchemy ORM models for database tables.

This package defines the store schema used by the import pipeline:

Models:
    base: Base declarative class and shared enums (JobStatus, Difficulty)
    trail: Canonical trail records keyed by source_id
    import_job: ImportJob (per source) and BulkImportJob (per request)

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON elsewhere so the same models run
    against SQLite in tests.

Usage:
    from models.trail import Trail
    from models.import_job import ImportJob, BulkImportJob
    from models.base import JobStatus, Difficulty

Relationships:
    - BulkImportJob → ImportJob (one-to-many, bulk counters aggregate children)
    - ImportJob → Trail (last_import_job_id, informational)
"""

__all__ = [
    "Base",
    "JobStatus",
    "Difficulty",
    "Trail",
    "ImportJob",
    "BulkImportJob",
]
