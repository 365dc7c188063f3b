"""
Unit tests for provider record normalization
"""

import math
import pytest

from core.exceptions import NormalizationError, InvalidCoordinatesError, UnknownSourceError
from models.base import Difficulty
from schemas.normalized import BASE_TAGS
from trail_import.normalizer import (
    normalize,
    normalize_many,
    standardize_difficulty,
    parse_distance_km,
    extract_state,
    derive_tags,
    registered_sources,
)
from tests.factories import hp_record, usgs_record, osm_record


class TestDifficulty:
    """Tests for difficulty standardization"""

    @pytest.mark.parametrize("label,expected", [
        ("green", Difficulty.EASY),
        ("greenBlue", Difficulty.EASY),
        ("blue", Difficulty.MODERATE),
        ("blueBlack", Difficulty.HARD),
        ("black", Difficulty.HARD),
        ("dblack", Difficulty.EXPERT),
        ("hiking", Difficulty.EASY),
        ("mountain_hiking", Difficulty.MODERATE),
        ("alpine_hiking", Difficulty.HARD),
        ("difficult_alpine_hiking", Difficulty.EXPERT),
        ("Beginner", Difficulty.EASY),
        ("Strenuous but difficult", Difficulty.HARD),
        ("Extreme scramble", Difficulty.EXPERT),
        ("T1", Difficulty.EASY),
        ("5", Difficulty.HARD),
    ])
    def test_known_labels(self, label, expected):
        assert standardize_difficulty(label) == expected

    @pytest.mark.parametrize("label", [None, "", "   ", "unrated", "???"])
    def test_unknown_labels_default_to_moderate(self, label):
        """Never fails, falls back to moderate"""
        assert standardize_difficulty(label) == Difficulty.MODERATE


class TestUnits:
    """Tests for unit parsing helpers"""

    @pytest.mark.parametrize("value,expected", [
        ("12.5", 12.5),
        ("7 mi", 7 * 1.60934),
        ("850 m", 0.85),
        ("3,5 km", 3.5),
        ("", None),
        ("unknown", None),
        (None, None),
        ("-4", None),
    ])
    def test_parse_distance(self, value, expected):
        result = parse_distance_km(value)
        if expected is None:
            assert result is None
        else:
            assert result == pytest.approx(expected)

    def test_extract_state(self):
        assert extract_state("Boulder, CO") == "CO"
        assert extract_state("Somewhere in the woods") is None
        assert extract_state(None) is None


class TestTags:
    """Tests for derived tags"""

    def test_base_tags_always_present(self):
        tags = derive_tags(5.0, 100.0)
        assert set(BASE_TAGS) <= tags

    def test_length_and_gain_tags(self):
        assert "long-distance" in derive_tags(12.0, 0)
        assert "short-hike" in derive_tags(2.0, 0)
        assert "steep" in derive_tags(5.0, 450)
        tags = derive_tags(5.0, 100)
        assert not {"long-distance", "short-hike", "steep"} & tags

    def test_rating_tags(self):
        assert {"popular", "highly-rated"} <= derive_tags(5.0, 0, rating=4.8)
        tags = derive_tags(5.0, 0, rating=4.1)
        assert "popular" in tags
        assert "highly-rated" not in tags


class TestHikingProject:
    """Tests for Hiking Project records"""

    def test_units_converted_to_metric(self):
        """10 miles and 1000 feet become km and meters"""
        trail = normalize(hp_record(1, length=10, ascent=1000), "hiking_project")

        assert trail.source_id == "hp-7000001"
        assert trail.length_km == pytest.approx(16.0934, abs=1e-4)
        assert trail.length == 10
        assert trail.length_unit == "mi"
        assert trail.elevation_gain_meters == pytest.approx(304.8)
        assert "long-distance" in trail.tags
        assert "steep" in trail.tags

    def test_location_and_state(self):
        trail = normalize(hp_record(1), "hiking_project")
        assert trail.location == "Boulder, CO"
        assert trail.state_province == "CO"
        assert trail.country == "United States"
        assert trail.difficulty == Difficulty.MODERATE

    def test_region_state_fallback(self):
        trail = normalize(hp_record(1, location="Deep woods", _region_state="WA"), "hiking_project")
        assert trail.state_province == "WA"

    def test_source_specific_tags(self):
        trail = normalize(hp_record(1, difficulty="black", high=9500, stars=4.7), "hiking_project")
        assert {"challenging", "high-altitude", "highly-rated", "popular"} <= trail.tags

        trail = normalize(hp_record(2, difficulty="green"), "hiking_project")
        assert "beginner-friendly" in trail.tags

    def test_missing_measurements_use_defaults(self):
        trail = normalize(hp_record(1, length=None, ascent=None, high=None), "hiking_project")
        assert trail.length_km == pytest.approx(3.0)
        assert trail.elevation_gain_meters == 0
        assert trail.elevation_meters is None

    def test_missing_name_gets_placeholder(self):
        trail = normalize(hp_record(3, name=None), "hiking_project")
        assert trail.name == "Trail 7000003"


class TestCoordinates:
    """Tests for coordinate validation"""

    @pytest.mark.parametrize("lat,lng", [
        (0, 0),
        (None, -105.0),
        ("abc", -105.0),
        (float("nan"), -105.0),
        (95.0, -105.0),
        (40.0, -190.0),
    ])
    def test_invalid_coordinates_rejected(self, lat, lng):
        with pytest.raises(InvalidCoordinatesError):
            normalize(hp_record(1, latitude=lat, longitude=lng), "hiking_project")

    def test_invalid_coordinates_is_normalization_error(self):
        with pytest.raises(NormalizationError):
            normalize(usgs_record(1, coordinates={"lat": None, "lng": None}), "usgs")

    def test_numeric_strings_accepted(self):
        trail = normalize(hp_record(1, latitude="40.015", longitude="-105.27"), "hiking_project")
        assert trail.latitude == pytest.approx(40.015)
        assert trail.longitude == pytest.approx(-105.27)


class TestOpenStreetMap:
    """Tests for Overpass relations"""

    def test_center_and_tags(self):
        trail = normalize(osm_record(1), "openstreetmap")

        assert trail.source_id == "osm-900001"
        assert trail.name == "Ridge Route 1"
        assert trail.latitude == pytest.approx(39.501)
        assert trail.length_km == pytest.approx(12.5)
        assert trail.length_unit == "km"
        assert trail.difficulty == Difficulty.MODERATE
        assert trail.state_province == "CO"
        assert trail.location == "Colorado Rockies"
        assert {"surface-gravel", "sac-mountain_hiking", "long-distance"} <= trail.tags

    def test_bounds_used_without_center(self):
        record = osm_record(1, center=None)
        record["bounds"] = {"minlat": 39.0, "maxlat": 40.0, "minlon": -106.0, "maxlon": -105.0}
        trail = normalize(record, "openstreetmap")
        assert trail.latitude == pytest.approx(39.5)
        assert trail.longitude == pytest.approx(-105.5)

    def test_defaults_without_distance(self):
        record = osm_record(1)
        record["tags"] = {"name": "Plain Route", "route": "foot"}
        trail = normalize(record, "openstreetmap")
        assert trail.length_km == pytest.approx(5.0)
        assert trail.elevation_gain_meters == pytest.approx(200.0)
        assert trail.trail_type == "foot"

    def test_geometry_passed_through(self):
        geometry = {"type": "LineString", "coordinates": [[-106.0, 39.5], [-106.1, 39.6]]}
        trail = normalize(osm_record(1, geometry=geometry), "openstreetmap")
        assert trail.raw_geometry == geometry
        assert trail.to_row()["geojson"] == geometry


class TestSurveyAndParks:
    """Tests for government survey and park authority records"""

    def test_usgs_record(self):
        trail = normalize(usgs_record(1), "usgs")
        assert trail.source_id == "usgs-yose-trail-1"
        assert trail.location == "Yosemite National Park, CA"
        assert trail.length_km == pytest.approx(3 * 1.60934)
        assert trail.difficulty == Difficulty.MODERATE
        assert trail.surface == "dirt"

    def test_parks_canada_record(self):
        record = {
            "id": "banff-12",
            "name": "Johnston Canyon",
            "park_name": "Banff National Park",
            "province": "AB",
            "coordinates": {"lat": 51.245, "lng": -115.839},
            "length_km": 5.4,
            "elevation_gain_m": 120,
            "difficulty": "Easy",
            "surface": "Paved",
        }
        trail = normalize(record, "parks_canada")
        assert trail.source_id == "pc-banff-12"
        assert trail.country == "Canada"
        assert trail.location == "Banff National Park, AB"
        assert trail.difficulty == Difficulty.EASY
        assert "surface-paved" in trail.tags

    def test_parks_canada_defaults(self):
        record = {"id": "fundy-1", "name": "Dickson Falls", "coordinates": {"lat": 45.6, "lng": -65.0}}
        trail = normalize(record, "parks_canada")
        assert trail.length_km == pytest.approx(5.0)
        assert trail.elevation_gain_meters == pytest.approx(300.0)
        assert "steep" not in trail.tags


class TestDispatch:
    """Tests for source dispatch and batch normalization"""

    def test_all_sources_registered(self):
        assert registered_sources() == ["hiking_project", "openstreetmap", "parks_canada", "usgs"]

    def test_unknown_source(self):
        with pytest.raises(UnknownSourceError):
            normalize(hp_record(1), "alltrails")

        with pytest.raises(UnknownSourceError):
            normalize_many([hp_record(1)], "alltrails")

    def test_missing_id_rejected(self):
        with pytest.raises(NormalizationError):
            normalize(hp_record(1, id=None), "hiking_project")

    def test_normalize_many_collects_failures(self):
        records = [
            hp_record(1),
            hp_record(2, latitude=0, longitude=0),
            hp_record(3, id=""),
            hp_record(4),
        ]
        outcome = normalize_many(records, "hiking_project")

        assert [t.source_id for t in outcome.trails] == ["hp-7000001", "hp-7000004"]
        assert outcome.failed == 2
        assert outcome.failures[0]["error_type"] == "InvalidCoordinatesError"

    def test_normalization_is_deterministic(self):
        first = normalize(hp_record(5), "hiking_project")
        second = normalize(hp_record(5), "hiking_project")
        assert first == second

    def test_row_mapping(self):
        row = normalize(hp_record(1), "hiking_project").to_row()
        assert row["difficulty"] == "moderate"
        assert row["tags"] == sorted(row["tags"])
        assert not math.isnan(row["length_km"])
