"""
Regional park authority adapter: one CSV trail dataset per park.

Expected columns (extra columns are ignored):
    id, name, description, park_name, province, latitude, longitude,
    length_km, elevation_gain_m, difficulty, trail_type, surface
"""

from typing import List, Dict, Any, Optional
from math import radians, sin, cos, sqrt, atan2
import io
import logging

import httpx
import pandas as pd

from schemas.imports import LocationFilter
from trail_import.adapters.base import SourceAdapter, SourceConfig, Region, KM_PER_MILE
from core.exceptions import ProviderRequestError

logger = logging.getLogger(__name__)

DEFAULT_REGIONS = [
    Region("banff", lat=51.4968, lng=-115.9281, state="AB", country="Canada"),
    Region("jasper", lat=52.8734, lng=-117.9543, state="AB", country="Canada"),
    Region("algonquin", lat=45.5347, lng=-78.2734, state="ON", country="Canada"),
    Region("pacific-rim", lat=49.0425, lng=-125.7739, state="BC", country="Canada"),
    Region("gros-morne", lat=49.5934, lng=-57.8067, state="NL", country="Canada"),
    Region("cape-breton-highlands", lat=46.7431, lng=-60.6475, state="NS", country="Canada"),
    Region("fundy", lat=45.5950, lng=-64.9500, state="NB", country="Canada"),
    Region("kootenay", lat=50.8833, lng=-116.0500, state="BC", country="Canada"),
]


def _haversine_km(lat1, lon1, lat2, lon2):
    """Quick haversine distance in km."""
    rlat1, rlon1, rlat2, rlon2 = radians(lat1), radians(lon1), radians(lat2), radians(lon2)
    dlat, dlon = rlat2 - rlat1, rlon2 - rlon1
    a = sin(dlat / 2) ** 2 + cos(rlat1) * cos(rlat2) * sin(dlon / 2) ** 2
    return 6371 * 2 * atan2(sqrt(a), sqrt(1 - a))


def parse_dataset(text: str, region: Region) -> List[Dict[str, Any]]:
    """
    Parse one park CSV into raw trail records.

    Blank cells become None; ids are prefixed with the park slug so they
    stay unique across datasets.
    """
    df = pd.read_csv(io.StringIO(text), dtype={"id": str})
    if df.empty or "id" not in df.columns:
        return []

    df = df.dropna(subset=["id"])
    df = df.astype(object).where(df.notna(), None)

    records = []
    for row in df.to_dict(orient="records"):
        records.append({
            "id": f"{region.name}-{str(row['id']).strip()}",
            "name": row.get("name"),
            "description": row.get("description"),
            "park_name": row.get("park_name"),
            "province": row.get("province") or region.state,
            "coordinates": {"lat": row.get("latitude"), "lng": row.get("longitude")},
            "length_km": row.get("length_km"),
            "elevation_gain_m": row.get("elevation_gain_m"),
            "difficulty": row.get("difficulty"),
            "trail_type": row.get("trail_type"),
            "surface": row.get("surface"),
        })
    return records


class ParksCanadaAdapter(SourceAdapter):
    """
    Download and parse per-park CSV datasets.

    ``base_url`` is a template with a ``{region}`` placeholder filled with
    the park slug.
    """

    source_tag = "parks_canada"

    def regions_for(self, location: Optional[LocationFilter] = None) -> List[Region]:
        """Parks in the requested province, or within the requested radius"""
        regions = list(self.config.regions)
        if location is None:
            return regions
        if location.state:
            return [r for r in regions if r.state == location.state.upper()]
        radius_km = location.radius * KM_PER_MILE
        return [
            r for r in regions
            if r.lat is not None
            and _haversine_km(location.lat, location.lng, r.lat, r.lng) <= radius_km
        ]

    async def fetch_batch(
        self,
        client: httpx.AsyncClient,
        region: Region,
        limit: int,
    ) -> List[Dict[str, Any]]:
        url = self.config.base_url.format(region=region.name)
        response = await self._request(client, "GET", url, region)

        try:
            records = parse_dataset(response.text, region)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise ProviderRequestError(
                "Failed to parse CSV dataset",
                context={"provider": self.source_tag, "region": region.name, "url": url},
                original_exception=e,
            )
        return records[:limit]

    def record_id(self, record: Dict[str, Any]) -> str:
        value = record.get("id")
        return "" if value is None else str(value)


def build(config: SourceConfig, client: Optional[httpx.AsyncClient] = None) -> ParksCanadaAdapter:
    if not config.regions:
        config.regions = list(DEFAULT_REGIONS)
    return ParksCanadaAdapter(config, client=client)
