"""Geo domain exports."""

from .buckets import Coordinate, ScaleLevel, cell_boundary, cell_center, room_id, scale_level
from .fuzz import PrivacyFuzzer

__all__ = [
	"Coordinate",
	"PrivacyFuzzer",
	"ScaleLevel",
	"cell_boundary",
	"cell_center",
	"room_id",
	"scale_level",
]
