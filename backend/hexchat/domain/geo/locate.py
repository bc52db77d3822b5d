"""GPS fix acquisition with a bounded wait and timezone fallback."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from hexchat.domain.geo.buckets import Coordinate
from hexchat.settings import settings

logger = logging.getLogger(__name__)

LocationProvider = Callable[[], Awaitable[Coordinate]]

# Used when neither a fix nor a known timezone is available
DEFAULT_LOCATION = Coordinate(35.8617, 104.1954)

_TIMEZONE_DEFAULTS: Dict[str, Coordinate] = {
	"Asia/Shanghai": Coordinate(35.8617, 104.1954),
	"Asia/Chongqing": Coordinate(29.5630, 106.5516),
	"Asia/Hong_Kong": Coordinate(22.3193, 114.1694),
	"Asia/Taipei": Coordinate(25.0330, 121.5654),
	"Asia/Tokyo": Coordinate(35.6762, 139.6503),
	"Asia/Seoul": Coordinate(37.5665, 126.9780),
	"Asia/Singapore": Coordinate(1.3521, 103.8198),
	"Asia/Kolkata": Coordinate(28.6139, 77.2090),
	"Asia/Dubai": Coordinate(25.2048, 55.2708),
	"Europe/London": Coordinate(51.5074, -0.1278),
	"Europe/Paris": Coordinate(48.8566, 2.3522),
	"Europe/Berlin": Coordinate(52.5200, 13.4050),
	"Europe/Moscow": Coordinate(55.7558, 37.6173),
	"America/New_York": Coordinate(40.7128, -74.0060),
	"America/Chicago": Coordinate(41.8781, -87.6298),
	"America/Denver": Coordinate(39.7392, -104.9903),
	"America/Los_Angeles": Coordinate(34.0522, -118.2437),
	"America/Sao_Paulo": Coordinate(-23.5505, -46.6333),
	"Australia/Sydney": Coordinate(-33.8688, 151.2093),
	"Africa/Cairo": Coordinate(30.0444, 31.2357),
	"UTC": Coordinate(51.4779, -0.0015),
}

_REGION_DEFAULTS: Dict[str, Coordinate] = {
	"Asia": Coordinate(35.8617, 104.1954),
	"Europe": Coordinate(50.1109, 8.6821),
	"America": Coordinate(39.8283, -98.5795),
	"Australia": Coordinate(-25.2744, 133.7751),
	"Africa": Coordinate(1.6508, 17.6791),
	"Pacific": Coordinate(-17.7134, 178.0650),
}


class LocationUnavailable(RuntimeError):
	"""Raised by providers when the platform cannot or will not produce a fix."""


@dataclass(slots=True)
class LocationFix:
	coord: Coordinate
	fallback: bool = False


def timezone_default(tz_name: Optional[str]) -> Coordinate:
	if not tz_name:
		return DEFAULT_LOCATION
	exact = _TIMEZONE_DEFAULTS.get(tz_name)
	if exact is not None:
		return exact
	region = tz_name.split("/", 1)[0]
	return _REGION_DEFAULTS.get(region, DEFAULT_LOCATION)


async def acquire_fix(
	provider: Optional[LocationProvider],
	*,
	timeout: Optional[float] = None,
	tz_name: Optional[str] = None,
) -> LocationFix:
	"""Return a raw fix from ``provider`` or the timezone default.

	The fallback never raises; callers inspect ``fallback`` to decide on a notice.
	"""
	wait = settings.geolocation_timeout_seconds if timeout is None else timeout
	tz_name = tz_name if tz_name is not None else settings.client_timezone
	if provider is None:
		return LocationFix(timezone_default(tz_name), fallback=True)
	try:
		coord = await asyncio.wait_for(provider(), timeout=wait)
	except asyncio.TimeoutError:
		logger.warning("geolocation timed out after %ss, using timezone default tz=%s", wait, tz_name)
	except LocationUnavailable as exc:
		logger.warning("geolocation unavailable (%s), using timezone default tz=%s", exc, tz_name)
	else:
		return LocationFix(Coordinate(float(coord[0]), float(coord[1])))
	return LocationFix(timezone_default(tz_name), fallback=True)
