from sqlalchemy import Column, String, Float, Text, Boolean, DateTime, Index, Uuid
from datetime import datetime
import uuid
from models.base import Base, Difficulty, JSONType, value_enum


class Trail(Base):
    """
    Canonical trail record shared by every provider.

    Field Mapping Strategy:

    hiking_project:
    - id -> source_id ("hp-<id>")
    - summary -> description
    - length (mi) -> length, length_km
    - ascent (ft) -> elevation_gain (m)
    - high (ft) -> elevation (m)

    openstreetmap:
    - relation id -> source_id ("osm-<id>")
    - tags.name / tags.description / tags.surface / tags.route
    - tags.distance (km) -> length_km
    - center -> latitude/longitude, geometry -> geojson

    usgs (NPS):
    - id -> source_id ("usgs-<id>")
    - park_name + state -> location
    - length_miles -> length_km, elevation_gain_ft -> elevation_gain

    parks_canada:
    - id -> source_id ("pc-<id>")
    - province -> state_province, length_km -> length_km
    """
    __tablename__ = "trails"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Provenance
    source_id = Column(String(255), nullable=False, unique=True, index=True)
    source = Column(String(50), nullable=False, index=True)

    # Core fields
    name = Column(String(500), nullable=False, index=True)
    description = Column(Text, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    difficulty = Column(value_enum(Difficulty), nullable=False, default=Difficulty.MODERATE, index=True)

    # Measurements (native length kept for display)
    length = Column(Float, nullable=False, default=0.0)
    length_unit = Column(String(5), nullable=False, default="km")
    length_km = Column(Float, nullable=False, default=0.0)
    elevation_gain = Column(Float, nullable=False, default=0.0)  # meters
    elevation = Column(Float, nullable=True)  # meters

    # Geography
    location = Column(String(500), nullable=True)
    country = Column(String(100), nullable=True)
    state_province = Column(String(100), nullable=True, index=True)

    # Classification
    surface = Column(String(100), nullable=True)
    trail_type = Column(String(100), nullable=True)
    tags = Column(JSONType, nullable=True)
    is_age_restricted = Column(Boolean, nullable=False, default=False)
    geojson = Column(JSONType, nullable=True)

    # Import tracking
    last_import_job_id = Column(Uuid, nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_trails_source_difficulty", "source", "difficulty"),
        Index("idx_trails_lat_lng", "latitude", "longitude"),
    )
