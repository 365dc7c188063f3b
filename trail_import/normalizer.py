"""
Transform provider-native trail records into the canonical NormalizedTrail.

Each provider registers one handler; ``normalize`` dispatches on the source
tag. Handlers are pure: no I/O, no clock, no randomness.

Handles:
- Difficulty standardization
- Unit conversion (miles/feet to km/meters)
- Tag extraction
- Source-specific defaults
"""

from typing import Dict, Any, Optional, List, Callable, Set, Iterable, Tuple
from dataclasses import dataclass, field
import math
import re
import logging

from pydantic import ValidationError

from models.base import Difficulty
from schemas.normalized import NormalizedTrail, BASE_TAGS
from core.exceptions import (
    NormalizationError,
    InvalidCoordinatesError,
    UnknownSourceError,
)

logger = logging.getLogger(__name__)

MILES_TO_KM = 1.60934
FEET_TO_METERS = 0.3048

# (length_km, elevation_gain_meters) when the provider reports nothing
SOURCE_DEFAULTS = {
    "hiking_project": (3.0, 0.0),
    "openstreetmap": (5.0, 200.0),
    "usgs": (3.0, 150.0),
    "parks_canada": (5.0, 300.0),
}

_STATE_PATTERN = re.compile(r",\s*([A-Z]{2})\s*$")
_NUMBER_PATTERN = re.compile(r"[-+]?\d*\.?\d+")

Handler = Callable[[Dict[str, Any]], NormalizedTrail]
_HANDLERS: Dict[str, Handler] = {}


def register(source_tag: str):
    """Register a normalization handler for a provider tag"""
    def decorator(func: Handler) -> Handler:
        _HANDLERS[source_tag] = func
        return func
    return decorator


def registered_sources() -> List[str]:
    return sorted(_HANDLERS)


# ============================================================================
# DIFFICULTY
# ============================================================================

# Exact provider codes checked before the keyword scan
_EXACT_DIFFICULTY = {
    # Hiking Project rating colours
    "green": Difficulty.EASY,
    "greenblue": Difficulty.EASY,
    "blue": Difficulty.MODERATE,
    "blueblack": Difficulty.HARD,
    "black": Difficulty.HARD,
    "dblack": Difficulty.EXPERT,
    # OSM sac_scale
    "hiking": Difficulty.EASY,
    "mountain_hiking": Difficulty.MODERATE,
    "demanding_mountain_hiking": Difficulty.MODERATE,
    "alpine_hiking": Difficulty.HARD,
    "demanding_alpine_hiking": Difficulty.HARD,
    "difficult_alpine_hiking": Difficulty.EXPERT,
}

_DIFFICULTY_KEYWORDS = [
    (("green", "easy", "beginner"), Difficulty.EASY),
    (("blue", "moderate", "intermediate"), Difficulty.MODERATE),
    (("black", "hard", "difficult", "advanced"), Difficulty.HARD),
    (("expert", "extreme", "technical"), Difficulty.EXPERT),
]

_DIFFICULTY_CODES = [
    (("t1",), ("1",), Difficulty.EASY),
    (("t2", "t3"), ("2", "3"), Difficulty.MODERATE),
    (("t4", "t5"), ("4", "5"), Difficulty.HARD),
    (("t6",), ("6",), Difficulty.EXPERT),
]


def standardize_difficulty(value: Any) -> Difficulty:
    """
    Map a provider difficulty label onto the canonical scale.

    Never fails: unknown, empty or missing labels map to moderate.
    """
    if value is None:
        return Difficulty.MODERATE

    lower = str(value).strip().lower()
    if not lower:
        return Difficulty.MODERATE

    if lower in _EXACT_DIFFICULTY:
        return _EXACT_DIFFICULTY[lower]

    for keywords, difficulty in _DIFFICULTY_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return difficulty

    for fragments, digits, difficulty in _DIFFICULTY_CODES:
        if lower in digits or any(fragment in lower for fragment in fragments):
            return difficulty

    return Difficulty.MODERATE


# ============================================================================
# UNITS AND PARSING
# ============================================================================

def miles_to_km(miles: float) -> float:
    return miles * MILES_TO_KM


def feet_to_meters(feet: float) -> float:
    return feet * FEET_TO_METERS


def _parse_float(value: Any) -> Optional[float]:
    """Safely parse a finite float value"""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (ValueError, TypeError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def _positive(value: Any) -> Optional[float]:
    parsed = _parse_float(value)
    if parsed is None or parsed <= 0:
        return None
    return parsed


def parse_distance_km(value: Any) -> Optional[float]:
    """
    Parse an OSM ``distance`` tag.

    Plain numbers are kilometers; ``mi``, ``m`` and ``km`` suffixes are
    honoured ("12.5", "7 mi", "850 m").
    """
    if value is None:
        return None
    text = str(value).strip().lower().replace(",", ".")
    match = _NUMBER_PATTERN.search(text)
    if not match:
        return None
    number = _positive(match.group())
    if number is None:
        return None
    unit = text[match.end():].strip()
    if unit.startswith("mi"):
        return miles_to_km(number)
    if unit.startswith("km") or not unit:
        return number
    if unit.startswith("m"):
        return number / 1000.0
    return number


def extract_state(location: Optional[str]) -> Optional[str]:
    """Trailing two-letter ", XX" code of a location string"""
    if not location:
        return None
    match = _STATE_PATTERN.search(location)
    return match.group(1) if match else None


def validate_coordinates(
    latitude: Any,
    longitude: Any,
    source: str,
    native_id: Any,
) -> Tuple[float, float]:
    """
    Return a usable (latitude, longitude) pair.

    Raises:
        InvalidCoordinatesError: missing, non-numeric, NaN, out of range,
            or the (0, 0) placeholder pair
    """
    lat = _parse_float(latitude)
    lng = _parse_float(longitude)
    context = {
        "source": source,
        "native_id": str(native_id),
        "latitude": latitude,
        "longitude": longitude,
    }

    if lat is None or lng is None:
        raise InvalidCoordinatesError("Missing or non-numeric coordinates", context=context)
    if abs(lat) > 90 or abs(lng) > 180:
        raise InvalidCoordinatesError("Coordinates out of range", context=context)
    if lat == 0 and lng == 0:
        raise InvalidCoordinatesError("Placeholder (0, 0) coordinates", context=context)
    return lat, lng


# ============================================================================
# TAGS
# ============================================================================

def derive_tags(
    length_km: float,
    elevation_gain_meters: float,
    rating: Optional[float] = None,
    extra: Iterable[str] = (),
) -> Set[str]:
    """Tags derived from metric measurements plus provider-specific extras"""
    tags = set(BASE_TAGS)
    tags.update(t for t in extra if t)

    if rating is not None:
        if rating >= 4.5:
            tags.add("highly-rated")
        if rating >= 4.0:
            tags.add("popular")

    if length_km > 10:
        tags.add("long-distance")
    elif 0 < length_km < 3:
        tags.add("short-hike")

    if elevation_gain_meters > 300:
        tags.add("steep")

    return tags


def _slug(value: Any) -> str:
    return re.sub(r"[^a-z0-9]+", "_", str(value).strip().lower()).strip("_")


def _require_id(record: Dict[str, Any], source: str) -> str:
    native_id = record.get("id")
    if native_id is None or str(native_id).strip() == "":
        raise NormalizationError("Record has no native id", context={"source": source})
    return str(native_id).strip()


# ============================================================================
# PROVIDER HANDLERS
# ============================================================================

@register("hiking_project")
def normalize_hiking_project(record: Dict[str, Any]) -> NormalizedTrail:
    """Hiking Project: miles, feet, colour-coded difficulty, star rating"""
    native_id = _require_id(record, "hiking_project")
    lat, lng = validate_coordinates(
        record.get("latitude"), record.get("longitude"), "hiking_project", native_id
    )
    default_km, default_gain = SOURCE_DEFAULTS["hiking_project"]

    length_mi = _positive(record.get("length"))
    length_km = miles_to_km(length_mi) if length_mi is not None else default_km
    ascent_ft = _positive(record.get("ascent"))
    gain_m = feet_to_meters(ascent_ft) if ascent_ft is not None else default_gain
    high_ft = _parse_float(record.get("high"))
    elevation_m = feet_to_meters(high_ft) if high_ft is not None else None

    raw_difficulty = str(record.get("difficulty") or "").lower()
    extra = []
    if "green" in raw_difficulty:
        extra.append("beginner-friendly")
    if "black" in raw_difficulty:
        extra.append("challenging")
    if high_ft is not None and high_ft > 8000:
        extra.append("high-altitude")

    location = record.get("location") or "Unknown Location"
    return NormalizedTrail(
        source_id=f"hp-{native_id}",
        source="hiking_project",
        name=record.get("name") or f"Trail {native_id}",
        description=record.get("summary"),
        latitude=lat,
        longitude=lng,
        difficulty=standardize_difficulty(record.get("difficulty")),
        length=length_mi if length_mi is not None else length_km / MILES_TO_KM,
        length_unit="mi",
        length_km=length_km,
        elevation_gain_meters=gain_m,
        elevation_meters=elevation_m,
        location=location,
        country="United States",
        state_province=extract_state(location) or record.get("_region_state"),
        surface=None,
        trail_type="hiking",
        tags=derive_tags(length_km, gain_m, _parse_float(record.get("stars")), extra),
    )


def _osm_center(record: Dict[str, Any]) -> Tuple[Any, Any]:
    """Representative point of an Overpass element"""
    center = record.get("center")
    if isinstance(center, dict):
        return center.get("lat"), center.get("lon")
    if "lat" in record or "lon" in record:
        return record.get("lat"), record.get("lon")
    bounds = record.get("bounds")
    if isinstance(bounds, dict):
        try:
            return (
                (float(bounds["minlat"]) + float(bounds["maxlat"])) / 2,
                (float(bounds["minlon"]) + float(bounds["maxlon"])) / 2,
            )
        except (KeyError, TypeError, ValueError):
            return None, None
    return None, None


@register("openstreetmap")
def normalize_openstreetmap(record: Dict[str, Any]) -> NormalizedTrail:
    """Overpass relations: everything interesting lives in ``tags``"""
    native_id = _require_id(record, "openstreetmap")
    tags = record.get("tags") or {}
    lat, lng = validate_coordinates(*_osm_center(record), "openstreetmap", native_id)
    default_km, default_gain = SOURCE_DEFAULTS["openstreetmap"]

    length_km = parse_distance_km(tags.get("distance")) or default_km
    gain_m = default_gain
    ascent = _positive(tags.get("ascent"))
    if ascent is not None:
        gain_m = ascent

    extra = []
    if tags.get("surface"):
        extra.append(f"surface-{_slug(tags['surface'])}")
    if tags.get("trail_visibility"):
        extra.append(f"visibility-{_slug(tags['trail_visibility'])}")
    if tags.get("sac_scale"):
        extra.append(f"sac-{_slug(tags['sac_scale'])}")

    state = record.get("_region_state")
    region = record.get("_region")
    return NormalizedTrail(
        source_id=f"osm-{native_id}",
        source="openstreetmap",
        name=tags.get("name") or f"Trail {native_id}",
        description=tags.get("description"),
        latitude=lat,
        longitude=lng,
        difficulty=standardize_difficulty(tags.get("sac_scale") or tags.get("difficulty")),
        length=length_km,
        length_unit="km",
        length_km=length_km,
        elevation_gain_meters=gain_m,
        elevation_meters=_parse_float(tags.get("ele")),
        location=region or "Unknown Location",
        country=record.get("_country") or "Unknown",
        state_province=state,
        surface=tags.get("surface"),
        trail_type=tags.get("route") or "hiking",
        tags=derive_tags(length_km, gain_m, extra=extra),
        raw_geometry=record.get("geometry"),
    )


@register("usgs")
def normalize_usgs(record: Dict[str, Any]) -> NormalizedTrail:
    """Government survey records (NPS-backed): miles and feet"""
    native_id = _require_id(record, "usgs")
    coordinates = record.get("coordinates") or {}
    lat, lng = validate_coordinates(
        coordinates.get("lat"), coordinates.get("lng"), "usgs", native_id
    )
    default_km, default_gain = SOURCE_DEFAULTS["usgs"]

    length_mi = _positive(record.get("length_miles"))
    length_km = miles_to_km(length_mi) if length_mi is not None else default_km
    gain_ft = _positive(record.get("elevation_gain_ft"))
    gain_m = feet_to_meters(gain_ft) if gain_ft is not None else default_gain

    state = record.get("state") or None
    park_name = record.get("park_name")
    if park_name and state:
        location = f"{park_name}, {state}"
    else:
        location = park_name or state or "Unknown Location"

    return NormalizedTrail(
        source_id=f"usgs-{native_id}",
        source="usgs",
        name=record.get("name") or f"Trail {native_id}",
        description=record.get("description"),
        latitude=lat,
        longitude=lng,
        difficulty=standardize_difficulty(record.get("difficulty_rating")),
        length=length_mi if length_mi is not None else length_km / MILES_TO_KM,
        length_unit="mi",
        length_km=length_km,
        elevation_gain_meters=gain_m,
        location=location,
        country="United States",
        state_province=state,
        surface=record.get("surface_type"),
        trail_type=record.get("trail_type") or "hiking",
        tags=derive_tags(length_km, gain_m),
    )


@register("parks_canada")
def normalize_parks_canada(record: Dict[str, Any]) -> NormalizedTrail:
    """Regional park authority datasets: already metric"""
    native_id = _require_id(record, "parks_canada")
    coordinates = record.get("coordinates") or {}
    lat, lng = validate_coordinates(
        coordinates.get("lat"), coordinates.get("lng"), "parks_canada", native_id
    )
    default_km, default_gain = SOURCE_DEFAULTS["parks_canada"]

    length_km = _positive(record.get("length_km")) or default_km
    gain_m = _positive(record.get("elevation_gain_m")) or default_gain

    province = record.get("province") or None
    park_name = record.get("park_name")
    if park_name and province:
        location = f"{park_name}, {province}"
    else:
        location = park_name or province or "Unknown Location"

    extra = []
    if record.get("surface"):
        extra.append(f"surface-{_slug(record['surface'])}")

    return NormalizedTrail(
        source_id=f"pc-{native_id}",
        source="parks_canada",
        name=record.get("name") or f"Trail {native_id}",
        description=record.get("description"),
        latitude=lat,
        longitude=lng,
        difficulty=standardize_difficulty(record.get("difficulty")),
        length=length_km,
        length_unit="km",
        length_km=length_km,
        elevation_gain_meters=gain_m,
        location=location,
        country="Canada",
        state_province=province,
        surface=record.get("surface"),
        trail_type=record.get("trail_type") or "hiking",
        tags=derive_tags(length_km, gain_m, extra=extra),
    )


# ============================================================================
# DISPATCH
# ============================================================================

def normalize(raw: Dict[str, Any], source_tag: str) -> NormalizedTrail:
    """
    Normalize one provider record.

    Raises:
        UnknownSourceError: no handler registered for ``source_tag``
        InvalidCoordinatesError: the record has no usable coordinates
        NormalizationError: the record fails canonical validation
    """
    handler = _HANDLERS.get(source_tag)
    if handler is None:
        raise UnknownSourceError(
            f"No normalizer registered for source '{source_tag}'",
            context={"source": source_tag, "registered": registered_sources()},
        )
    try:
        return handler(raw)
    except ValidationError as e:
        raise NormalizationError(
            "Record failed canonical validation",
            context={"source": source_tag, "native_id": str(raw.get("id"))},
            original_exception=e,
        )


@dataclass
class NormalizationOutcome:
    """Result of normalizing a batch of raw records"""
    trails: List[NormalizedTrail] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


def normalize_many(records: Iterable[Dict[str, Any]], source_tag: str) -> NormalizationOutcome:
    """
    Normalize records, collecting data problems as failures.

    Only an unknown source tag propagates; per-record problems never do.
    """
    if source_tag not in _HANDLERS:
        raise UnknownSourceError(
            f"No normalizer registered for source '{source_tag}'",
            context={"source": source_tag, "registered": registered_sources()},
        )

    outcome = NormalizationOutcome()
    for record in records:
        try:
            outcome.trails.append(normalize(record, source_tag))
        except NormalizationError as e:
            outcome.failures.append(e.to_dict())
            logger.debug(
                f"Skipping {source_tag} record {record.get('id')}: {e.message}",
                extra={"error_context": e.to_dict()},
            )

    if outcome.failures:
        logger.info(
            f"Normalized {len(outcome.trails)} {source_tag} records, "
            f"{outcome.failed} rejected"
        )
    return outcome
