"""Coordinate fuzzing applied before any location leaves the client."""

from __future__ import annotations

import random
from typing import Optional

from hexchat.domain.geo.buckets import Coordinate
from hexchat.settings import settings


def _clamp(value: float, low: float, high: float) -> float:
	return max(low, min(high, value))


class PrivacyFuzzer:
	"""Bounded uniform noise on both axes.

	``fuzz`` produces the session anchor and is called once per raw GPS fix.
	``micro_fuzz`` is drawn fresh on every presence tick and only moves the
	map marker; room membership must never be computed from it.
	"""

	def __init__(
		self,
		*,
		offset_deg: Optional[float] = None,
		marker_offset_deg: Optional[float] = None,
		rng: Optional[random.Random] = None,
	) -> None:
		self.offset_deg = settings.fuzz_offset_deg if offset_deg is None else offset_deg
		self.marker_offset_deg = settings.marker_fuzz_deg if marker_offset_deg is None else marker_offset_deg
		self._rng = rng or random.Random()

	def _jitter(self, coord: Coordinate, band: float) -> Coordinate:
		lat = coord[0] + self._rng.uniform(-band, band)
		lng = coord[1] + self._rng.uniform(-band, band)
		return Coordinate(_clamp(lat, -90.0, 90.0), _clamp(lng, -180.0, 180.0))

	def fuzz(self, coord: Coordinate) -> Coordinate:
		return self._jitter(coord, self.offset_deg)

	def micro_fuzz(self, coord: Coordinate) -> Coordinate:
		return self._jitter(coord, self.marker_offset_deg)
