"""
Pydantic schema for the canonical normalized trail with validation
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Set, Any, Dict
from models.base import Difficulty

BASE_TAGS = ("hiking", "outdoor", "nature")


class NormalizedTrail(BaseModel):
    """
    Canonical trail record produced by the normalizer.

    The only shape the batch writer accepts. Ensures:
    - Required fields are present and cleaned
    - Coordinates are in range
    - Measurements are metric and non-negative
    - Base tags are always present
    """

    model_config = ConfigDict(use_enum_values=False, frozen=False)

    # Provenance (source_id is the upsert key)
    source_id: str = Field(..., min_length=1, max_length=255)
    source: str = Field(..., min_length=1, max_length=50)

    # Core fields
    name: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    difficulty: Difficulty = Difficulty.MODERATE

    # Measurements
    length: float = Field(0.0, ge=0)
    length_unit: str = "km"
    length_km: float = Field(0.0, ge=0)
    elevation_gain_meters: float = Field(0.0, ge=0)
    elevation_meters: Optional[float] = None

    # Geography
    location: str = "Unknown Location"
    country: str = "Unknown"
    state_province: Optional[str] = None

    # Classification
    surface: Optional[str] = None
    trail_type: Optional[str] = None
    tags: Set[str] = Field(default_factory=lambda: set(BASE_TAGS))
    is_age_restricted: bool = False
    raw_geometry: Optional[Any] = None

    @field_validator("name")
    @classmethod
    def clean_name(cls, v):
        """Clean and normalize name"""
        v = v.strip()
        if not v:
            raise ValueError("Name cannot be empty after stripping")
        return v

    @field_validator("description", "surface", "trail_type", "state_province")
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        """Ensure tags is a set that always carries the base tags"""
        if v is None:
            v = []
        if isinstance(v, str):
            v = v.split(",")
        tags = {str(t).strip().lower() for t in v if str(t).strip()}
        tags.update(BASE_TAGS)
        return tags

    def to_row(self) -> Dict[str, Any]:
        """Column values for the trails table"""
        return {
            "source_id": self.source_id,
            "source": self.source,
            "name": self.name,
            "description": self.description,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "difficulty": self.difficulty.value,
            "length": self.length,
            "length_unit": self.length_unit,
            "length_km": self.length_km,
            "elevation_gain": self.elevation_gain_meters,
            "elevation": self.elevation_meters,
            "location": self.location,
            "country": self.country,
            "state_province": self.state_province,
            "surface": self.surface,
            "trail_type": self.trail_type,
            "tags": sorted(self.tags),
            "is_age_restricted": self.is_age_restricted,
            "geojson": self.raw_geometry,
        }
