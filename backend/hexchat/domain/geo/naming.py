"""Human readable room headers via reverse geocoding."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from hexchat.domain.geo.buckets import Coordinate, ScaleLevel, cell_for
from hexchat.settings import settings

logger = logging.getLogger(__name__)

UNKNOWN_COUNTRY = "Unknown"
UNKNOWN_CITY = "Unknown city"
UNKNOWN_DISTRICT = "Unknown area"

_GEOCODE_ZOOM = {
	ScaleLevel.WORLD: 3,
	ScaleLevel.CITY: 10,
	ScaleLevel.DISTRICT: 14,
}


def _first(address: dict, *keys: str) -> str:
	for key in keys:
		value = address.get(key)
		if value:
			return str(value)
	return ""


async def _reverse(
	coord: Coordinate,
	zoom: int,
	*,
	client: Optional[httpx.AsyncClient],
	language: str,
) -> dict:
	params = {
		"format": "json",
		"lat": f"{coord[0]:.4f}",
		"lon": f"{coord[1]:.4f}",
		"zoom": zoom,
		"accept-language": language,
	}
	owns_client = client is None
	http = client or httpx.AsyncClient(timeout=5.0, headers={"User-Agent": settings.service_name})
	try:
		resp = await http.get(settings.nominatim_url, params=params)
		resp.raise_for_status()
		return resp.json().get("address") or {}
	finally:
		if owns_client:
			await http.aclose()


async def lookup_country_code(coord: Coordinate, *, client: Optional[httpx.AsyncClient] = None) -> Optional[str]:
	"""ISO 3166-1 alpha-2 code for ``coord``, or None when it cannot be resolved."""
	try:
		address = await _reverse(coord, _GEOCODE_ZOOM[ScaleLevel.WORLD], client=client, language="en")
	except (httpx.HTTPError, ValueError) as exc:
		logger.info("country lookup failed: %s", exc)
		return None
	code = str(address.get("country_code") or "").strip()
	if len(code) != 2 or not code.isalpha():
		return None
	return code.upper()


async def describe_location(
	coord: Coordinate,
	scale: ScaleLevel,
	*,
	client: Optional[httpx.AsyncClient] = None,
	language: str = "en",
) -> str:
	"""Return ``Country``, ``Country - City`` or ``Country - City - District``.

	Lookup failures degrade to the hex index so the header is never empty.
	"""
	try:
		address = await _reverse(coord, _GEOCODE_ZOOM[scale], client=client, language=language)
	except (httpx.HTTPError, ValueError) as exc:
		logger.info("reverse geocode failed scale=%s: %s", scale.value, exc)
		if scale is ScaleLevel.WORLD:
			return UNKNOWN_COUNTRY
		return f"{UNKNOWN_COUNTRY} - [{cell_for(coord, scale)}]"

	country = _first(address, "country") or UNKNOWN_COUNTRY
	if scale is ScaleLevel.WORLD:
		return country
	city = _first(address, "city", "town", "state") or UNKNOWN_CITY
	if scale is ScaleLevel.CITY:
		return f"{country} - {city}"
	district = _first(address, "suburb", "district", "neighbourhood") or UNKNOWN_DISTRICT
	return f"{country} - {city} - {district}"
