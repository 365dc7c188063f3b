"""
Source registry: provider tag -> configured adapter.
"""

from typing import Dict, List, Optional, Callable
import logging

import httpx

from core.config import Settings, settings as default_settings
from core.exceptions import UnknownSourceError
from trail_import.adapters.base import SourceAdapter, SourceConfig
from trail_import.adapters import hiking_project, openstreetmap, usgs, parks_canada

logger = logging.getLogger(__name__)

_BUILDERS: Dict[str, Callable[..., SourceAdapter]] = {
    "hiking_project": hiking_project.build,
    "openstreetmap": openstreetmap.build,
    "usgs": usgs.build,
    "parks_canada": parks_canada.build,
}

SUPPORTED_SOURCES = tuple(sorted(_BUILDERS))


def source_config(source: str, settings: Settings = default_settings) -> SourceConfig:
    """Provider configuration from application settings"""
    common = {
        "timeout": settings.PROVIDER_TIMEOUT_SECONDS,
        "max_retries": settings.PROVIDER_MAX_RETRIES,
    }
    if source == "hiking_project":
        return SourceConfig(
            api_key=settings.HIKING_PROJECT_API_KEY,
            base_url=settings.HIKING_PROJECT_URL,
            max_results_per_call=500,
            request_delay=1.0,
            **common,
        )
    if source == "openstreetmap":
        return SourceConfig(
            base_url=settings.OVERPASS_URL,
            max_results_per_call=1000,
            request_delay=2.0,
            **common,
        )
    if source == "usgs":
        return SourceConfig(
            api_key=settings.NPS_API_KEY,
            base_url=settings.NPS_API_URL,
            max_results_per_call=50,
            request_delay=0.5,
            **common,
        )
    if source == "parks_canada":
        return SourceConfig(
            base_url=settings.PARKS_CANADA_DATASET_URL,
            max_results_per_call=1000,
            request_delay=1.0,
            **common,
        )
    raise UnknownSourceError(
        f"Unknown trail source '{source}'",
        context={"source": source, "supported": list(SUPPORTED_SOURCES)},
    )


def build_adapter(
    source: str,
    config: Optional[SourceConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
    settings: Settings = default_settings,
) -> SourceAdapter:
    builder = _BUILDERS.get(source)
    if builder is None:
        raise UnknownSourceError(
            f"Unknown trail source '{source}'",
            context={"source": source, "supported": list(SUPPORTED_SOURCES)},
        )
    return builder(config or source_config(source, settings), client=client)


def build_adapters(
    sources: List[str],
    client: Optional[httpx.AsyncClient] = None,
    settings: Settings = default_settings,
) -> Dict[str, SourceAdapter]:
    """
    Adapters for every supported source in ``sources``.

    Unknown tags are left out so the orchestrator can record them as
    per-source failures instead of rejecting the whole request.
    """
    adapters = {}
    for source in sources:
        if source not in _BUILDERS:
            logger.warning(f"No adapter for source '{source}'")
            continue
        adapters[source] = build_adapter(source, client=client, settings=settings)
    return adapters
