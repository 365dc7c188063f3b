"""
OpenStreetMap adapter: named hiking/foot route relations from Overpass.
"""

from typing import List, Dict, Any, Optional
import logging

import httpx

from trail_import.adapters.base import SourceAdapter, SourceConfig, Region

logger = logging.getLogger(__name__)

# Bounding boxes as (south, west, north, east)
DEFAULT_REGIONS = [
    Region("Colorado Rockies", bbox=(37.0, -109.0, 41.0, -102.0), state="CO", country="United States"),
    Region("California Sierra Nevada", bbox=(35.5, -120.0, 38.5, -117.0), state="CA", country="United States"),
    Region("Washington Cascades", bbox=(45.5, -122.5, 48.5, -120.0), state="WA", country="United States"),
    Region("Appalachian Mountains", bbox=(35.0, -85.0, 40.0, -75.0), country="United States"),
]


def build_query(region: Region, limit: int, timeout: int = 60) -> str:
    """Overpass QL for named hiking/foot relations inside the region's bbox"""
    south, west, north, east = region.bbox
    box = f"{south},{west},{north},{east}"
    return (
        f"[out:json][timeout:{timeout}];\n"
        "(\n"
        f'  relation["route"="hiking"]["name"]({box});\n'
        f'  relation["route"="foot"]["name"]({box});\n'
        ");\n"
        f"out tags center {limit};\n"
    )


class OpenStreetMapAdapter(SourceAdapter):
    """
    Fetch route relations from the Overpass API.

    Overpass asks for long gaps between requests, so the default
    ``request_delay`` is the longest of all providers. Unnamed relations
    are dropped; region metadata is attached as ``_region``,
    ``_region_state`` and ``_country``.
    """

    source_tag = "openstreetmap"

    async def fetch_batch(
        self,
        client: httpx.AsyncClient,
        region: Region,
        limit: int,
    ) -> List[Dict[str, Any]]:
        query = build_query(
            region,
            min(limit, self.config.max_results_per_call),
            timeout=int(self.config.timeout),
        )
        response = await self._request(
            client, "POST", self.config.base_url, region, data={"data": query}
        )
        payload = self._json(response, region)

        elements = self._records(payload, "elements", region)
        relations = []
        for element in elements:
            if element.get("type") != "relation":
                continue
            tags = element.get("tags")
            if not isinstance(tags, dict) or not tags.get("name"):
                continue
            element.setdefault("_region", region.name)
            element.setdefault("_region_state", region.state)
            element.setdefault("_country", region.country)
            relations.append(element)
        return relations

    def record_id(self, record: Dict[str, Any]) -> str:
        value = record.get("id")
        return "" if value is None else str(value)


def build(config: SourceConfig, client: Optional[httpx.AsyncClient] = None) -> OpenStreetMapAdapter:
    if not config.regions:
        config.regions = list(DEFAULT_REGIONS)
    return OpenStreetMapAdapter(config, client=client)
