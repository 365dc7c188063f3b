"""
Bulk trail import pipeline components.

This package contains everything between an import request and the trail
store:

Modules:
    normalizer: Provider record -> NormalizedTrail, one handler per source
    writer: Idempotent batch upserts with per-batch accounting
    jobs: ImportJob/BulkImportJob bookkeeping and atomic counters
    orchestrator: Bounded-concurrency coordination across sources
    progress: Polling progress reporter (percent and ETA)
    sources: Provider tag -> configured adapter
    scheduler: APScheduler integration for the refresh import

Subpackages:
    adapters: Source adapters (Hiking Project, OpenStreetMap, USGS/NPS,
        Parks Canada) with throttling, retries and circuit breaking

Architecture:
    Each source runs as one worker:

    1. Fetch - walk the provider's regions, skipping failed ones
    2. Normalize - reject unusable records, count them as failed
    3. Write - upsert in batches, counters committed with each batch

    A failing source is recorded on its job and never aborts the others.

Usage:
    from core.database import async_session_maker
    from schemas.imports import ImportRequest
    from trail_import.orchestrator import ImportOrchestrator

    orchestrator = ImportOrchestrator(async_session_maker)
    job, created = await orchestrator.execute(
        ImportRequest(sources=["hiking_project", "openstreetmap"], max_trails_per_source=500)
    )
    print(job.status, job.trails_added)

Error Handling:
    All components use custom exceptions from core.exceptions carrying
    structured context for logs and job records.
"""

__all__ = [
    "ImportOrchestrator",
    "JobTracker",
    "BatchWriter",
    "BatchResult",
    "ProgressReporter",
    "ImportScheduler",
    "normalize",
    "normalize_many",
    "build_adapters",
]
