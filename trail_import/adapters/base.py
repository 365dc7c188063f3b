"""
Base class for trail source adapters with throttling, retry and circuit breaking.

This module provides resilient provider access with:
- Fixed inter-call delay per provider
- Exponential backoff retry logic for transient failures
- Circuit breaker that short-circuits remaining regions
- Region iteration with log-and-skip on failed regions
- De-duplication by provider-native id
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime, timedelta
import asyncio
import math
import time
import logging

import httpx

from schemas.imports import LocationFilter
from core.exceptions import (
    ProviderError,
    ProviderRequestError,
    RetryableError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
    CircuitOpenError,
)

logger = logging.getLogger(__name__)

KM_PER_DEGREE_LAT = 111.0
KM_PER_MILE = 1.60934


@dataclass
class Region:
    """One provider call target: a point radius, a bounding box or a state code"""
    name: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_miles: float = 200.0
    bbox: Optional[Tuple[float, float, float, float]] = None  # south, west, north, east
    state: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def from_location(cls, location: LocationFilter) -> "Region":
        """Single region derived from a request location"""
        radius_km = location.radius * KM_PER_MILE
        lat_delta = radius_km / KM_PER_DEGREE_LAT
        lng_delta = radius_km / (KM_PER_DEGREE_LAT * max(math.cos(math.radians(location.lat)), 0.01))
        return cls(
            name=location.city or f"{location.lat:.3f},{location.lng:.3f}",
            lat=location.lat,
            lng=location.lng,
            radius_miles=location.radius,
            bbox=(
                max(location.lat - lat_delta, -90.0),
                max(location.lng - lng_delta, -180.0),
                min(location.lat + lat_delta, 90.0),
                min(location.lng + lng_delta, 180.0),
            ),
            state=location.state.upper() if location.state else None,
        )


@dataclass
class SourceConfig:
    """
    Per-provider adapter configuration.

    Attributes:
        api_key: Provider credential (if any)
        base_url: Provider endpoint or URL template
        regions: Default regions walked by ``fetch``
        max_results_per_call: Upper bound requested per region call
        request_delay: Minimum seconds between successive calls
        timeout: Per-call timeout in seconds
        max_retries: Retries after the first attempt for transient errors
        retry_delay: Initial backoff delay in seconds
        max_retry_after: Upper bound on a provider's Retry-After wait in seconds
        circuit_breaker_threshold: Consecutive failed calls before the circuit opens
        circuit_breaker_timeout: Seconds before an open circuit resets
    """
    api_key: Optional[str] = None
    base_url: str = ""
    regions: List[Region] = field(default_factory=list)
    max_results_per_call: int = 500
    request_delay: float = 1.0
    timeout: float = 30.0
    max_retries: int = 2
    retry_delay: float = 1.0
    max_retry_after: float = 60.0
    circuit_breaker_threshold: int = 3
    circuit_breaker_timeout: float = 60.0


class SourceAdapter(ABC):
    """
    Abstract base class for all trail providers.

    Subclasses implement ``fetch_batch`` (one call for one region) and
    ``record_id``; ``fetch`` walks the regions, throttles, skips failed
    regions and de-duplicates.
    """

    source_tag: str = ""

    def __init__(self, config: SourceConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

        # Throttle state
        self._last_request_at: Optional[float] = None
        self._throttle_lock = asyncio.Lock()

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until: Optional[datetime] = None

    @abstractmethod
    async def fetch_batch(
        self,
        client: httpx.AsyncClient,
        region: Region,
        limit: int,
    ) -> List[Dict[str, Any]]:
        """
        Fetch raw records for one region.

        Raises:
            ProviderError: the call failed after retries
        """
        pass

    @abstractmethod
    def record_id(self, record: Dict[str, Any]) -> str:
        """Provider-native id used for de-duplication"""
        pass

    def regions_for(self, location: Optional[LocationFilter] = None) -> List[Region]:
        """Default regions, or a single region derived from a request location"""
        if location is None:
            return list(self.config.regions)
        return [Region.from_location(location)]

    # ========================================================================
    # Region walk
    # ========================================================================

    async def fetch(
        self,
        limit: int,
        location: Optional[LocationFilter] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch up to ``limit`` unique raw records across all regions.

        Never raises for provider problems: failed regions are logged and
        skipped, an unreachable provider yields an empty list.
        """
        regions = self.regions_for(location)
        if self._client is not None:
            return await self._fetch_regions(self._client, regions, limit)

        async with httpx.AsyncClient(timeout=self.config.timeout) as client:
            return await self._fetch_regions(client, regions, limit)

    async def _fetch_regions(
        self,
        client: httpx.AsyncClient,
        regions: List[Region],
        limit: int,
    ) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        seen = set()
        failed_regions = 0

        for region in regions:
            if len(records) >= limit:
                break

            if self._is_circuit_open():
                logger.warning(
                    f"Circuit breaker open for {self.source_tag}; "
                    f"skipping remaining regions from {region.name}"
                )
                break

            try:
                batch = await self.fetch_batch(client, region, limit - len(records))
            except ProviderError as e:
                failed_regions += 1
                logger.warning(
                    f"{self.source_tag} region '{region.name}' failed: {e.message}",
                    extra={"error_context": e.to_dict()},
                )
                continue

            added = 0
            for record in batch:
                native_id = self.record_id(record)
                if not native_id or native_id in seen:
                    continue
                seen.add(native_id)
                records.append(record)
                added += 1
                if len(records) >= limit:
                    break

            logger.info(
                f"{self.source_tag} region '{region.name}': "
                f"{len(batch)} fetched, {added} new ({len(records)} total)"
            )

        if failed_regions:
            logger.warning(
                f"{self.source_tag}: {failed_regions}/{len(regions)} regions failed"
            )
        return records

    # ========================================================================
    # Throttling
    # ========================================================================

    async def _throttle(self):
        """Wait until ``request_delay`` has passed since the previous call"""
        async with self._throttle_lock:
            if self._last_request_at is not None and self.config.request_delay > 0:
                elapsed = time.monotonic() - self._last_request_at
                if elapsed < self.config.request_delay:
                    await asyncio.sleep(self.config.request_delay - elapsed)
            self._last_request_at = time.monotonic()

    # ========================================================================
    # Circuit breaker
    # ========================================================================

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info(f"Circuit breaker reset for {self.source_tag}")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failed call and potentially open the circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self.config.circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self.config.circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for {self.source_tag}. "
                f"Will retry after {self.config.circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    # ========================================================================
    # Requests
    # ========================================================================

    def _backoff(self, attempt: int) -> float:
        return self.config.retry_delay * (2 ** attempt)

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        region: Region,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Make one throttled provider call with retry and exponential backoff.

        Returns:
            Successful HTTP response

        Raises:
            CircuitOpenError: the breaker is open
            AuthenticationError / ResourceNotFoundError: not retried
            RateLimitError / NetworkError: transient errors after max retries
            ProviderRequestError: any other failed call
        """
        context = {"provider": self.source_tag, "url": url, "region": region.name}

        if self._is_circuit_open():
            raise CircuitOpenError(
                f"Circuit breaker is open for {self.source_tag}",
                context={**context, "open_until": self._circuit_breaker_open_until.isoformat()},
            )

        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            await self._throttle()

            try:
                logger.debug(f"{method} {url} attempt {attempt + 1}/{attempts}")
                response = await client.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    headers=headers,
                    timeout=self.config.timeout,
                )
            except httpx.HTTPError as e:
                error = self._transport_error(e, context, attempt)
            else:
                if response.status_code < 400:
                    self._record_success()
                    return response
                error = self._status_error(response, url, context, attempt)

            if isinstance(error, RetryableError) and not last_attempt:
                delay = self._retry_delay(error, attempt)
                logger.warning(
                    f"{self.source_tag}: {error.message}. "
                    f"Retrying in {delay} seconds (attempt {attempt + 1}/{attempts})"
                )
                await asyncio.sleep(delay)
                continue

            self._record_failure()
            raise error

        # Unreachable: the last attempt always returns or raises
        raise ProviderRequestError("Max retries exceeded", context=context)

    def _retry_delay(self, error: RetryableError, attempt: int) -> float:
        """Backoff for the next attempt; a provider's Retry-After wins but is capped"""
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(error.retry_after, self.config.max_retry_after)
        return self._backoff(attempt)

    def _transport_error(
        self, exc: httpx.HTTPError, context: Dict[str, Any], attempt: int
    ) -> ProviderError:
        """Map an httpx failure (timeout, connection, protocol) to NetworkError"""
        if isinstance(exc, httpx.TimeoutException):
            return NetworkError(
                f"Request timeout after {attempt + 1} attempts",
                context={**context, "timeout": self.config.timeout, "retry_count": attempt + 1},
                original_exception=exc,
            )
        return NetworkError(
            f"Network error after {attempt + 1} attempts",
            context={**context, "retry_count": attempt + 1},
            original_exception=exc,
        )

    def _status_error(
        self, response: httpx.Response, url: str, context: Dict[str, Any], attempt: int
    ) -> ProviderError:
        """
        Classify an HTTP error response.

        401/403 and 404 map to non-retryable errors, 429 and 5xx to
        retryable ones, any other 4xx to ProviderRequestError.
        """
        status = response.status_code

        if status in (401, 403):
            return AuthenticationError(
                f"Authentication failed for {self.source_tag}",
                context={**context, "status_code": status},
            )

        if status == 404:
            return ResourceNotFoundError(
                f"Resource not found: {url}",
                context={**context, "status_code": status},
            )

        if status == 429:
            return RateLimitError(
                f"Rate limit exceeded for {self.source_tag}",
                context={**context, "status_code": status, "retry_count": attempt + 1},
                retry_after=_retry_after(response),
            )

        if status >= 500:
            return NetworkError(
                f"Server error {status} after {attempt + 1} attempts",
                context={
                    **context,
                    "status_code": status,
                    "retry_count": attempt + 1,
                    "response_body": response.text[:500],
                },
            )

        return ProviderRequestError(
            f"{self.source_tag} returned HTTP {status}",
            context={**context, "status_code": status, "response_body": response.text[:500]},
        )

    def _json(self, response: httpx.Response, region: Region) -> Any:
        """Parse a JSON body, failing the region on malformed payloads"""
        try:
            return response.json()
        except ValueError as e:
            raise ProviderRequestError(
                "Failed to parse JSON response",
                context={
                    "provider": self.source_tag,
                    "region": region.name,
                    "response_body": response.text[:500],
                },
                original_exception=e,
            )

    def _records(self, payload: Any, key: str, region: Region) -> List[Dict[str, Any]]:
        """Object entries listed under ``key``; other entries are dropped"""
        items = payload.get(key) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return []

        records = [item for item in items if isinstance(item, dict)]
        if len(records) < len(items):
            logger.warning(
                f"{self.source_tag} region '{region.name}': "
                f"skipped {len(items) - len(records)} malformed entries"
            )
        return records


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
