"""
Government survey adapter backed by the National Park Service data API.

NPS "things to do" hiking entries are paged per state code and mapped onto
the survey record shape the normalizer expects:

    id, name, description, park_name, state, coordinates{lat, lng},
    length_miles, elevation_gain_ft, difficulty_rating, trail_type,
    surface_type
"""

from typing import List, Dict, Any, Optional
import logging

import httpx

from schemas.imports import LocationFilter
from trail_import.adapters.base import SourceAdapter, SourceConfig, Region
from core.exceptions import ProviderError, ProviderRequestError

logger = logging.getLogger(__name__)

DEFAULT_REGIONS = [
    Region("California", state="CA"),
    Region("Colorado", state="CO"),
    Region("Utah", state="UT"),
    Region("Arizona", state="AZ"),
    Region("Washington", state="WA"),
    Region("Wyoming", state="WY"),
    Region("Montana", state="MT"),
    Region("Tennessee", state="TN"),
]


def to_survey_record(item: Dict[str, Any], state: Optional[str]) -> Dict[str, Any]:
    """Map one NPS entry onto the survey record shape"""
    parks = item.get("relatedParks")
    first_park = parks[0] if isinstance(parks, list) and parks else None
    park_name = first_park.get("fullName") if isinstance(first_park, dict) else None
    return {
        "id": item.get("id"),
        "name": item.get("title") or item.get("name"),
        "description": item.get("shortDescription") or item.get("description"),
        "park_name": park_name,
        "state": state,
        "coordinates": {"lat": item.get("latitude"), "lng": item.get("longitude")},
        "length_miles": item.get("lengthMiles"),
        "elevation_gain_ft": item.get("elevationGainFeet"),
        "difficulty_rating": item.get("difficulty"),
        "trail_type": item.get("trailType"),
        "surface_type": item.get("surface"),
    }


class USGSAdapter(SourceAdapter):
    """
    Fetch hiking entries per state with ``start``/``limit`` paging.

    Each page is a separate throttled call; a region ends when the
    provider's ``total`` is reached, a short page comes back, or the
    requested limit is met.
    """

    source_tag = "usgs"

    def regions_for(self, location: Optional[LocationFilter] = None) -> List[Region]:
        if location is None:
            return list(self.config.regions)
        if not location.state:
            logger.warning("usgs lookups need a state code; location has none, skipping source")
            return []
        return [Region(location.city or location.state, state=location.state.upper())]

    async def fetch_batch(
        self,
        client: httpx.AsyncClient,
        region: Region,
        limit: int,
    ) -> List[Dict[str, Any]]:
        if not self.config.api_key:
            raise ProviderRequestError(
                "NPS API key is not configured",
                context={"provider": self.source_tag, "region": region.name},
            )

        url = f"{self.config.base_url.rstrip('/')}/thingstodo"
        page_size = max(1, min(limit, self.config.max_results_per_call))
        records: List[Dict[str, Any]] = []
        start = 0

        while len(records) < limit:
            params = {
                "stateCode": region.state,
                "q": "hiking",
                "start": start,
                "limit": page_size,
                "api_key": self.config.api_key,
            }
            try:
                response = await self._request(client, "GET", url, region, params=params)
                payload = self._json(response, region)
            except ProviderError as e:
                if not records:
                    raise
                # Keep the pages already read for this state
                logger.warning(
                    f"usgs page at start={start} for '{region.name}' failed, "
                    f"keeping {len(records)} records: {e.message}",
                    extra={"error_context": e.to_dict()},
                )
                break

            items = self._records(payload, "data", region)
            records.extend(to_survey_record(item, region.state) for item in items)

            page = payload.get("data") if isinstance(payload, dict) else None
            page_length = len(page) if isinstance(page, list) else 0
            try:
                total = int(payload.get("total", 0)) if isinstance(payload, dict) else 0
            except (TypeError, ValueError):
                total = 0

            start += page_length
            if page_length < page_size or start >= total:
                break

        return records[:limit]

    def record_id(self, record: Dict[str, Any]) -> str:
        value = record.get("id")
        return "" if value is None else str(value)


def build(config: SourceConfig, client: Optional[httpx.AsyncClient] = None) -> USGSAdapter:
    if not config.regions:
        config.regions = list(DEFAULT_REGIONS)
    return USGSAdapter(config, client=client)
