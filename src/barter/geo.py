"""Location resolution and distance helpers for geographic filtering."""
from __future__ import annotations

import asyncio
import logging
import math
import re
from typing import Dict, Optional

import aiohttp

from .errors import UpstreamUnavailable
from .models import Point

_log = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959.0
_POSTAL_CODE = re.compile(r"^(\d{5})(?:-\d{4})?$")


def parse_coordinates(value: str) -> Optional[Point]:
    """Parse a ``"lat,lng"`` string, returning ``None`` for anything else."""

    parts = value.split(",")
    if len(parts) != 2:
        return None
    try:
        lat = float(parts[0].strip())
        lng = float(parts[1].strip())
    except ValueError:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return Point(lat, lng)


def normalize_location(value: str) -> str:
    """Cache key for a free-text location; ZIP+4 collapses to the 5 digit code."""

    cleaned = " ".join(value.lower().split())
    match = _POSTAL_CODE.match(cleaned)
    if match:
        return match.group(1)
    return cleaned


def distance_miles(p1: Point, p2: Point) -> float:
    """Great-circle distance between two points using the haversine formula."""

    d_lat = math.radians(p2.lat - p1.lat)
    d_lng = math.radians(p2.lng - p1.lng)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(p1.lat)) * math.cos(math.radians(p2.lat)) * math.sin(d_lng / 2) ** 2
    )
    # Rounding can push a just past 1 for near-antipodal points.
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


class BigDataCloudGeocoder:
    """Client for the BigDataCloud locality lookup used to geocode postal codes."""

    def __init__(
        self,
        base_url: str = "https://api.bigdatacloud.net",
        *,
        country_code: str = "US",
        request_timeout: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.country_code = country_code
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def lookup(self, location: str) -> Point:
        """Return the coordinates for ``location``.

        Raises:
            UpstreamUnavailable: on HTTP failures, timeouts, or a payload
                without coordinates.
        """

        params = {
            "localityName": location,
            "countryCode": self.country_code,
            "localityLanguage": "en",
        }
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with self._get_session().get(
                f"{self.base_url}/data/reverse-geocode", params=params, timeout=timeout
            ) as resp:
                if resp.status != 200:
                    raise UpstreamUnavailable(f"Geocoding request failed with HTTP {resp.status}")
                payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise UpstreamUnavailable(f"Geocoding request failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise UpstreamUnavailable("Unexpected geocoding payload")
        lat = payload.get("latitude")
        lng = payload.get("longitude")
        if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)) or not (lat or lng):
            raise UpstreamUnavailable(f"No coordinates found for {location!r}")
        return Point(float(lat), float(lng))


class GeoResolver:
    """Turns stored locations into points, caching successful provider lookups.

    Resolution never raises: an unresolvable location yields ``None`` and
    callers treat that as "no geographic filter". Concurrent callers asking
    for the same location share one provider lookup.
    """

    def __init__(self, provider, *, timeout: float = 5.0) -> None:
        self.provider = provider
        self.timeout = timeout
        self._cache: Dict[str, Point] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    async def resolve(self, location: Optional[str]) -> Optional[Point]:
        if not location or not location.strip():
            return None

        point = parse_coordinates(location)
        if point is not None:
            return point

        key = normalize_location(location)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        task = self._pending.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._lookup(key))
            self._pending[key] = task
            task.add_done_callback(lambda _: self._pending.pop(key, None))
        return await asyncio.shield(task)

    async def _lookup(self, key: str) -> Optional[Point]:
        try:
            point = await asyncio.wait_for(self.provider.lookup(key), timeout=self.timeout)
        except asyncio.TimeoutError:
            _log.warning("Geocoding timed out for %r", key)
            return None
        except UpstreamUnavailable as exc:
            _log.warning("Geocoding failed for %r: %s", key, exc)
            return None

        self._cache[key] = point
        return point

    async def close(self) -> None:
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
