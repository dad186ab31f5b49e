"""
Reverse geocoding through the Google Geocoding API.

Addresses are cached per coordinate (rounded to 4 decimals, roughly 11 m)
for ``geocode_cache_ttl``. Without an API key, or when the lookup fails, the
coordinates themselves are returned as ``"{lat:.6f}, {lng:.6f}"`` so callers
always get a displayable string.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from fieldops.core.cache import get_cache
from fieldops.core.config import get_settings

logger = logging.getLogger(__name__)

GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

CACHE_PREFIX = "geocode:"


def fallback_address(latitude: float, longitude: float) -> str:
    return f"{latitude:.6f}, {longitude:.6f}"


def geocode_cache_key(latitude: float, longitude: float) -> str:
    return f"{CACHE_PREFIX}{latitude:.4f}_{longitude:.4f}"


def _formatted_address(data: Dict[str, Any]) -> Optional[str]:
    if data.get("status") != "OK":
        return None
    results = data.get("results") or []
    if not results:
        return None
    return results[0].get("formatted_address")


async def reverse_geocode(
    latitude: float,
    longitude: float,
    client: Optional[httpx.AsyncClient] = None,
    fallback: Optional[str] = None,
) -> str:
    """
    Resolve coordinates to a human readable address.

    Args:
        latitude: Decimal degrees.
        longitude: Decimal degrees.
        client: Optional shared ``httpx.AsyncClient``; a short-lived client is
            opened when omitted.
        fallback: Text returned when no address can be resolved; defaults to
            the coordinates.

    Returns:
        The formatted address, or the coordinate fallback string.
    """
    settings = get_settings()
    fallback = fallback or fallback_address(latitude, longitude)

    if not settings.google_maps_api_key:
        logger.debug("Reverse geocoding skipped: GOOGLE_MAPS_API_KEY not set")
        return fallback

    cache = get_cache()
    cache_key = geocode_cache_key(latitude, longitude)
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    params = {"latlng": f"{latitude},{longitude}", "key": settings.google_maps_api_key}
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.geocode_timeout_seconds) as own_client:
                response = await own_client.get(GOOGLE_GEOCODE_URL, params=params)
        else:
            response = await client.get(GOOGLE_GEOCODE_URL, params=params)
        response.raise_for_status()
        address = _formatted_address(response.json())
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Reverse geocoding failed for {latitude}, {longitude}: {e}")
        return fallback

    if not address:
        logger.info(f"No geocoding result for {latitude}, {longitude}")
        return fallback

    await cache.set(cache_key, address, ttl_ms=settings.geocode_cache_ttl)
    return address
