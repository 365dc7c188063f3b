"""
Pydantic schemas for the import trigger and job status surfaces.

The HTTP contract is camelCase (``maxTrailsPerSource``, ``jobId``); field
names are accepted in either form.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict
from datetime import datetime
from uuid import UUID
from models.base import JobStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class LocationFilter(CamelModel):
    """Narrow an import to one area instead of each provider's default regions"""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    radius: float = Field(50.0, gt=0, le=500, description="Radius in miles")
    city: Optional[str] = None
    state: Optional[str] = None


class ImportRequest(CamelModel):
    """Body of the import trigger"""
    sources: List[str] = Field(..., min_length=1)
    max_trails_per_source: int = Field(..., ge=1, le=50000)
    batch_size: Optional[int] = Field(None, ge=1)
    concurrency: Optional[int] = Field(None, ge=1)
    location: Optional[LocationFilter] = None
    background: bool = False

    @field_validator("sources")
    @classmethod
    def clean_sources(cls, v):
        """Lowercase, strip and de-duplicate while keeping order"""
        cleaned = []
        for source in v:
            source = source.strip().lower()
            if source and source not in cleaned:
                cleaned.append(source)
        if not cleaned:
            raise ValueError("At least one source is required")
        return cleaned

    def target_key(self) -> str:
        """Logical import target used to reject duplicate concurrent runs"""
        key = ",".join(sorted(self.sources))
        if self.location:
            place = self.location.city or f"{self.location.lat:.2f}:{self.location.lng:.2f}"
            key += f"@{place.lower()}"
            if self.location.state:
                key += f",{self.location.state.lower()}"
        return key


class ImportStats(CamelModel):
    processed: int = 0
    added: int = 0
    updated: int = 0
    failed: int = 0


class ImportResponse(CamelModel):
    """Trigger response, always structured even on partial failure"""
    success: bool
    message: str
    stats: ImportStats
    job_id: UUID
    status: JobStatus
    already_running: bool = False


class ImportJobResponse(CamelModel):
    """Per-source job record"""
    id: UUID
    bulk_job_id: Optional[UUID] = None
    source: str
    status: JobStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_trails_requested: int
    total_sources: int
    trails_processed: int
    trails_added: int
    trails_updated: int
    trails_failed: int
    error_message: Optional[str] = None


class BulkImportJobResponse(CamelModel):
    """Bulk job record with derived progress"""
    id: UUID
    status: JobStatus
    target_key: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    total_trails_requested: int
    total_sources: int
    trails_processed: int
    trails_added: int
    trails_updated: int
    trails_failed: int
    error_message: Optional[str] = None
    source_errors: Optional[Dict[str, str]] = None
    progress_percent: float = 0.0
    source_jobs: List[ImportJobResponse] = Field(default_factory=list)


class BulkImportJobList(CamelModel):
    jobs: List[BulkImportJobResponse]
    total: int
