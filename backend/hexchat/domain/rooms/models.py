"""Domain models for spatial rooms."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Tuple

from hexchat.domain.geo.buckets import ScaleLevel


@dataclass(frozen=True, slots=True)
class RoomSet:
	"""The three rooms a session keeps subscribed at once."""

	district: str
	city: str
	world: str

	def for_scale(self, scale: ScaleLevel) -> str:
		if scale is ScaleLevel.DISTRICT:
			return self.district
		if scale is ScaleLevel.CITY:
			return self.city
		return self.world

	def replace(self, scale: ScaleLevel, room_id: str) -> "RoomSet":
		values: Dict[str, str] = {"district": self.district, "city": self.city, "world": self.world}
		values[scale.value.lower()] = room_id
		return RoomSet(**values)

	def items(self) -> Iterator[Tuple[ScaleLevel, str]]:
		yield ScaleLevel.DISTRICT, self.district
		yield ScaleLevel.CITY, self.city
		yield ScaleLevel.WORLD, self.world
