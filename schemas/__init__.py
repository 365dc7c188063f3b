"""
Pydantic schemas for data validation and serialization.

This package defines Pydantic models used across the import pipeline:

Schemas:
    normalized: NormalizedTrail, the canonical record the writer accepts
    imports: Import trigger request/response and job status views
    api: Trail listing, health and statistics responses

Usage:
    from schemas.normalized import NormalizedTrail
    from schemas.imports import ImportRequest, ImportResponse
    from schemas.api import TrailListResponse, StatsResponse

Example:
    request = ImportRequest.model_validate(
        {"sources": ["hiking_project", "openstreetmap"], "maxTrailsPerSource": 500}
    )
    assert request.max_trails_per_source == 500

Validation:
    The HTTP contract for imports is camelCase; field names are accepted
    as well so the scheduler and tests can build requests directly.
"""

__all__ = [
    "NormalizedTrail",
    "ImportRequest",
    "ImportResponse",
    "ImportStats",
    "BulkImportJobResponse",
    "ImportJobResponse",
    "TrailResponse",
    "TrailListResponse",
    "HealthCheckResponse",
    "StatsResponse",
]
