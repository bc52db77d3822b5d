"""Hexagonal room bucketing over the H3 global grid.

Room ids are part of the persisted history's key space, so their format must
stay bit exact: ``world_global``, ``city_<h3 index>`` or ``district_<h3 index>``.
"""

from __future__ import annotations

from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

import h3


class Coordinate(NamedTuple):
	lat: float
	lng: float


class ScaleLevel(str, Enum):
	"""Spatial tier of a room, ordered from coarsest to finest."""

	WORLD = "WORLD"
	CITY = "CITY"
	DISTRICT = "DISTRICT"

	@property
	def rank(self) -> int:
		return _SCALE_ORDER.index(self)

	@property
	def prefix(self) -> str:
		return self.value.lower()

	# Granularity order, not the alphabetical order str would give
	def __lt__(self, other: object) -> bool:
		if not isinstance(other, ScaleLevel):
			return NotImplemented
		return self.rank < other.rank

	def __le__(self, other: object) -> bool:
		if not isinstance(other, ScaleLevel):
			return NotImplemented
		return self.rank <= other.rank

	def __gt__(self, other: object) -> bool:
		if not isinstance(other, ScaleLevel):
			return NotImplemented
		return self.rank > other.rank

	def __ge__(self, other: object) -> bool:
		if not isinstance(other, ScaleLevel):
			return NotImplemented
		return self.rank >= other.rank


_SCALE_ORDER: Tuple[ScaleLevel, ...] = (ScaleLevel.WORLD, ScaleLevel.CITY, ScaleLevel.DISTRICT)

WORLD_ROOM_ID = "world_global"

# H3 resolutions: res 4 has ~22km edges, res 6 ~3.6km
RESOLUTION_CITY = 4
RESOLUTION_DISTRICT = 6

CITY_MIN_ZOOM = 8
DISTRICT_MIN_ZOOM = 12

_RESOLUTIONS = {
	ScaleLevel.CITY: RESOLUTION_CITY,
	ScaleLevel.DISTRICT: RESOLUTION_DISTRICT,
}

# Zoom the map jumps to when the user picks a scale tab
_TAB_ZOOM = {
	ScaleLevel.WORLD: 5,
	ScaleLevel.CITY: 10,
	ScaleLevel.DISTRICT: 14,
}


def scale_level(zoom: float) -> ScaleLevel:
	if zoom >= DISTRICT_MIN_ZOOM:
		return ScaleLevel.DISTRICT
	if zoom >= CITY_MIN_ZOOM:
		return ScaleLevel.CITY
	return ScaleLevel.WORLD


def zoom_for_scale(scale: ScaleLevel) -> int:
	return _TAB_ZOOM[scale]


def resolution_for(scale: ScaleLevel) -> Optional[int]:
	"""Return the fixed H3 resolution of a scale, ``None`` for the world room."""
	return _RESOLUTIONS.get(scale)


def cell_for(coord: Coordinate, scale: ScaleLevel) -> str:
	resolution = _RESOLUTIONS.get(scale)
	if resolution is None:
		raise ValueError("the world scale has no hex cell")
	return h3.latlng_to_cell(coord[0], coord[1], resolution)


def room_id(coord: Coordinate, scale: ScaleLevel) -> str:
	if scale is ScaleLevel.WORLD:
		return WORLD_ROOM_ID
	return format_room_id(scale, cell_for(coord, scale))


def format_room_id(scale: ScaleLevel, cell: str) -> str:
	if scale is ScaleLevel.WORLD:
		return WORLD_ROOM_ID
	return f"{scale.prefix}_{cell}"


def parse_room_id(value: str) -> Tuple[ScaleLevel, Optional[str]]:
	"""Split a room id into its scale and hex cell."""
	if value == WORLD_ROOM_ID:
		return ScaleLevel.WORLD, None
	prefix, sep, cell = value.partition("_")
	if not sep or not cell:
		raise ValueError(f"malformed room id: {value!r}")
	for scale in (ScaleLevel.CITY, ScaleLevel.DISTRICT):
		if prefix == scale.prefix:
			if not h3.is_valid_cell(cell) or h3.get_resolution(cell) != _RESOLUTIONS[scale]:
				raise ValueError(f"room id cell does not match scale: {value!r}")
			return scale, cell
	raise ValueError(f"unknown room scale: {value!r}")


def cell_center(cell: str) -> Coordinate:
	lat, lng = h3.cell_to_latlng(cell)
	return Coordinate(lat, lng)


def cell_boundary(cell: str) -> List[Coordinate]:
	return [Coordinate(lat, lng) for lat, lng in h3.cell_to_boundary(cell)]
