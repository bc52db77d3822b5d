import asyncio

import pytest

from hexchat.domain.geo import locate
from hexchat.domain.geo.buckets import Coordinate


@pytest.mark.asyncio
async def test_fix_from_provider():
    async def provider():
        return Coordinate(39.9, 116.4)

    fix = await locate.acquire_fix(provider, timeout=1)
    assert fix.coord == Coordinate(39.9, 116.4)
    assert fix.fallback is False


@pytest.mark.asyncio
async def test_timeout_falls_back_to_timezone_default():
    async def slow_provider():
        await asyncio.sleep(5)
        return Coordinate(0.0, 0.0)

    fix = await locate.acquire_fix(slow_provider, timeout=0.05, tz_name="Europe/Paris")
    assert fix.fallback is True
    assert fix.coord == Coordinate(48.8566, 2.3522)


@pytest.mark.asyncio
async def test_denied_location_falls_back():
    async def denied():
        raise locate.LocationUnavailable("permission denied")

    fix = await locate.acquire_fix(denied, timeout=1, tz_name="America/Bogota")
    assert fix.fallback is True
    # Unlisted zone resolves through its region
    assert fix.coord == locate.timezone_default("America/Anything")


@pytest.mark.asyncio
async def test_missing_provider_uses_default():
    fix = await locate.acquire_fix(None, tz_name="")
    assert fix.fallback is True
    assert fix.coord == locate.DEFAULT_LOCATION


def test_timezone_default_unknown_region():
    assert locate.timezone_default("Antarctica/Troll") == locate.DEFAULT_LOCATION
    assert locate.timezone_default(None) == locate.DEFAULT_LOCATION
