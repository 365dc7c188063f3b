"""
Hiking Project adapter: quality-sorted trails around a point radius.
"""

from typing import List, Dict, Any, Optional
import logging

import httpx

from trail_import.adapters.base import SourceAdapter, SourceConfig, Region
from core.exceptions import ProviderRequestError

logger = logging.getLogger(__name__)

# The provider caps maxResults at 500 per call
MAX_RESULTS_PER_CALL = 500

DEFAULT_REGIONS = [
    Region("Northeast", lat=40.7128, lng=-74.0060, state="NY"),
    Region("Colorado", lat=39.7392, lng=-104.9903, state="CO"),
    Region("California", lat=37.7749, lng=-122.4194, state="CA"),
    Region("Pacific Northwest", lat=47.6062, lng=-122.3321, state="WA"),
    Region("Southeast", lat=35.2271, lng=-80.8431, state="NC"),
    Region("Texas", lat=30.2672, lng=-97.7431, state="TX"),
    Region("Southwest", lat=33.4484, lng=-112.0740, state="AZ"),
    Region("Midwest", lat=41.2524, lng=-95.9980, state="NE"),
]


class HikingProjectAdapter(SourceAdapter):
    """
    Fetch trails from the Hiking Project data API.

    One ``get-trails`` call per region (lat/lon + maxDistance miles),
    sorted by quality. Records keep the provider's native shape; the
    region's state code is attached as ``_region_state``.
    """

    source_tag = "hiking_project"

    async def fetch_batch(
        self,
        client: httpx.AsyncClient,
        region: Region,
        limit: int,
    ) -> List[Dict[str, Any]]:
        if not self.config.api_key:
            raise ProviderRequestError(
                "Hiking Project API key is not configured",
                context={"provider": self.source_tag, "region": region.name},
            )

        params = {
            "key": self.config.api_key,
            "lat": region.lat,
            "lon": region.lng,
            "maxDistance": int(region.radius_miles),
            "maxResults": min(limit, self.config.max_results_per_call, MAX_RESULTS_PER_CALL),
            "sort": "quality",
        }
        url = f"{self.config.base_url.rstrip('/')}/get-trails"
        response = await self._request(client, "GET", url, region, params=params)
        payload = self._json(response, region)

        trails = self._records(payload, "trails", region)
        for trail in trails:
            trail.setdefault("_region_state", region.state)
        return trails

    def record_id(self, record: Dict[str, Any]) -> str:
        value = record.get("id")
        return "" if value is None else str(value)


def build(config: SourceConfig, client: Optional[httpx.AsyncClient] = None) -> HikingProjectAdapter:
    if not config.regions:
        config.regions = list(DEFAULT_REGIONS)
    return HikingProjectAdapter(config, client=client)
