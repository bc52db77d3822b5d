"""Presence domain exports."""

from .tracker import PresenceTracker, ReadStatusMap
from .indicator import TypingDebouncer

__all__ = ["PresenceTracker", "ReadStatusMap", "TypingDebouncer"]
