"""
location.py — Location acquisition for outgoing alerts.

Resolution order (the send waits for this to finish before the record is
assembled):

    1. Fresh fix from the GeolocationSource, bounded by ``timeout_seconds``
         success → cached as the last-known location and returned
    2. Timeout / denial / error
         → last SUCCESSFULLY acquired fix for this device, if any
    3. Nothing cached
         → Coordinates.unavailable()

Only successful fixes are ever written to the cache, so an error can never
be replayed as a location.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Tuple

import httpx

from lifeline.alerts.models import Coordinates
from lifeline.core.clock import Clock
from lifeline.core.errors import LocationUnavailableError
from lifeline.core.storage import LocalStore

logger = logging.getLogger(__name__)

LAST_LOCATION_KEY = "last_location"


class GeolocationSource(Protocol):
    """Single-shot fix provider. Raises LocationUnavailableError on denial."""

    async def get_fix(self) -> Tuple[float, float]:
        ...


class FixedGeolocationSource:
    """Fixed install location (kiosks, base stations); denies when unset."""

    def __init__(self, latitude: Optional[float] = None, longitude: Optional[float] = None):
        self.latitude = latitude
        self.longitude = longitude

    async def get_fix(self) -> Tuple[float, float]:
        if self.latitude is None or self.longitude is None:
            raise LocationUnavailableError("No device location configured")
        return self.latitude, self.longitude


class HttpGeolocationSource:
    """
    Fix from an HTTP endpoint returning ``{"latitude": .., "longitude": ..}``
    (``lat`` / ``lon`` also accepted), e.g. a local GPS daemon bridge.
    """

    def __init__(self, url: str, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def get_fix(self) -> Tuple[float, float]:
        client = await self._get_client()
        try:
            response = await client.get(self.url)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LocationUnavailableError(f"Geolocation request failed: {e}") from e

        lat = data.get("latitude", data.get("lat"))
        lon = data.get("longitude", data.get("lon"))
        try:
            return _validate(float(lat), float(lon))
        except (TypeError, ValueError) as e:
            raise LocationUnavailableError(f"Bad geolocation payload: {data!r}") from e


def _validate(lat: float, lon: float) -> Tuple[float, float]:
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise ValueError(f"coordinates out of range: {lat}, {lon}")
    return lat, lon


class LocationResolver:
    """Fresh fix with timeout, falling back to the last successful fix."""

    def __init__(
        self,
        source: GeolocationSource,
        store: LocalStore,
        clock: Clock,
        timeout_seconds: float = 10.0,
    ):
        self.source = source
        self.store = store
        self.clock = clock
        self.timeout_seconds = timeout_seconds

    async def last_known(self) -> Optional[Coordinates]:
        cached: Optional[Dict[str, Any]] = await self.store.get(LAST_LOCATION_KEY)
        if not cached:
            return None
        try:
            lat, lon = _validate(float(cached["latitude"]), float(cached["longitude"]))
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed cached location %r", cached)
            return None
        return Coordinates(latitude=lat, longitude=lon)

    async def _remember(self, coords: Coordinates) -> None:
        try:
            await self.store.set(LAST_LOCATION_KEY, {
                "latitude": coords.latitude,
                "longitude": coords.longitude,
                "acquired_at": self.clock.now().isoformat(),
            })
        except Exception as e:
            # the fresh fix is still used for this alert
            logger.warning("Could not cache location fix: %s", e)

    async def resolve(self) -> Coordinates:
        """Best available coordinates for an alert being sent now."""
        try:
            lat, lon = await asyncio.wait_for(
                self.source.get_fix(), timeout=self.timeout_seconds,
            )
            coords = Coordinates(*_validate(float(lat), float(lon)))
        except asyncio.TimeoutError:
            reason = f"Location fix timed out after {self.timeout_seconds:.0f}s"
        except LocationUnavailableError as e:
            reason = e.message
        except (TypeError, ValueError) as e:
            reason = f"Invalid location fix: {e}"
        except Exception as e:
            logger.exception("Geolocation source failed")
            reason = f"Location error: {e}"
        else:
            await self._remember(coords)
            return coords

        cached = await self.last_known()
        if cached is not None:
            logger.info("%s; using last known location", reason)
            return cached

        logger.warning("%s; no cached location, marking unavailable", reason)
        return Coordinates.unavailable(reason)
