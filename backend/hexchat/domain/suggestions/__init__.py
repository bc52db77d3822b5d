"""Suggestion board exports."""

from .board import SUGGESTION_CHANNEL, SuggestionBoard
from .models import Suggestion
from .store import SuggestionStore

__all__ = ["SUGGESTION_CHANNEL", "Suggestion", "SuggestionBoard", "SuggestionStore"]
