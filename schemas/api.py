"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID
from models.base import Difficulty

# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    active_jobs: int = 0
    stale_jobs: int = 0
    last_import_completed_at: Optional[datetime] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "active_jobs": 1,
                "stale_jobs": 0,
                "last_import_completed_at": "2024-01-15T10:00:00Z"
            }
        }

# ============================================================================
# Trail Schemas
# ============================================================================

class TrailResponse(BaseModel):
    """Response model for an imported trail"""
    id: UUID
    source_id: str
    source: str
    name: str
    description: Optional[str] = None
    latitude: float
    longitude: float
    difficulty: Difficulty
    length: float
    length_unit: str
    length_km: float
    elevation_gain: float
    elevation: Optional[float] = None
    location: Optional[str] = None
    country: Optional[str] = None
    state_province: Optional[str] = None
    surface: Optional[str] = None
    trail_type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_age_restricted: bool = False
    created_at: datetime
    updated_at: datetime

    @field_validator("tags", mode="before")
    @classmethod
    def tags_or_empty(cls, v):
        return v or []

    class Config:
        from_attributes = True
        use_enum_values = True


class PaginationMetadata(BaseModel):
    """Pagination metadata"""
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
    has_next: bool
    has_previous: bool


class TrailListResponse(BaseModel):
    """Paginated trail response"""
    items: List[TrailResponse]
    pagination: PaginationMetadata
    filters_applied: Dict[str, Any] = Field(default_factory=dict)

# ============================================================================
# Statistics Schemas
# ============================================================================

class JobTotals(BaseModel):
    """Bulk job counts by status plus lifetime counters"""
    total_jobs: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    trails_processed: int = 0
    trails_added: int = 0
    trails_updated: int = 0
    trails_failed: int = 0


class StatsResponse(BaseModel):
    """Statistics response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    total_trails: int
    trails_by_source: Dict[str, int]
    trails_by_difficulty: Dict[str, int]
    jobs: JobTotals

    last_import_completed_at: Optional[datetime] = None
    avg_import_duration_seconds: Optional[float] = None

    class Config:
        json_schema_extra = {
            "example": {
                "timestamp": "2024-01-15T10:30:00Z",
                "total_trails": 5000,
                "trails_by_source": {"hiking_project": 2500, "openstreetmap": 2500},
                "trails_by_difficulty": {"easy": 1200, "moderate": 3000, "hard": 800},
                "jobs": {"total_jobs": 4, "by_status": {"completed": 3, "error": 1}},
                "avg_import_duration_seconds": 412.5
            }
        }

