"""Rooms domain exports."""

from .models import RoomSet
from .resolver import RoomMembershipResolver

__all__ = ["RoomMembershipResolver", "RoomSet"]
