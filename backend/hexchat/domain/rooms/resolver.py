"""Derive the district/city/world rooms for an anchor and gate hex clicks."""

from __future__ import annotations

import logging
from typing import Optional

import h3

from hexchat.domain.geo import buckets
from hexchat.domain.geo.buckets import Coordinate, ScaleLevel
from hexchat.domain.rooms.models import RoomSet
from hexchat.settings import settings

logger = logging.getLogger(__name__)


class RoomMembershipResolver:
	"""Maps the session anchor to its three concurrent rooms.

	Results are memoised on the anchor so repeated renders do not recompute
	cells; a new anchor (relocation or hex click) is the only trigger.
	"""

	def __init__(self, *, join_radius: Optional[int] = None) -> None:
		self.join_radius = settings.hex_join_radius if join_radius is None else join_radius
		self._anchor: Optional[Coordinate] = None
		self._rooms: Optional[RoomSet] = None

	def resolve(self, anchor: Coordinate) -> RoomSet:
		if self._rooms is not None and self._anchor == anchor:
			return self._rooms
		rooms = RoomSet(
			district=buckets.room_id(anchor, ScaleLevel.DISTRICT),
			city=buckets.room_id(anchor, ScaleLevel.CITY),
			world=buckets.WORLD_ROOM_ID,
		)
		self._anchor = Coordinate(anchor[0], anchor[1])
		self._rooms = rooms
		return rooms

	def can_join_hex(
		self,
		user_coord: Coordinate,
		target_hex: str,
		scale: ScaleLevel,
		is_admin: bool = False,
	) -> bool:
		if is_admin:
			return True
		resolution = buckets.resolution_for(scale)
		if resolution is None:
			return False
		if not h3.is_valid_cell(target_hex) or h3.get_resolution(target_hex) != resolution:
			return False
		own_cell = buckets.cell_for(user_coord, scale)
		try:
			distance = h3.grid_distance(own_cell, target_hex)
		except h3.H3BaseException:
			# Cells too far apart (or across pentagon distortion) have no grid distance
			logger.debug("grid distance unavailable own=%s target=%s", own_cell, target_hex)
			return False
		return distance <= self.join_radius
