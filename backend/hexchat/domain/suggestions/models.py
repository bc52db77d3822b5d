"""Suggestion board models and their wire payload."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


@dataclass(slots=True)
class Suggestion:
	id: str
	user_id: str
	user_name: str
	content: str
	timestamp: int

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"user_id": self.user_id,
			"user_name": self.user_name,
			"content": self.content,
			"timestamp": self.timestamp,
		}


def to_ms(value: Union[int, datetime]) -> int:
	if isinstance(value, datetime):
		if value.tzinfo is None:
			value = value.replace(tzinfo=timezone.utc)
		return int(value.timestamp() * 1000)
	return int(value)


class SuggestionPayload(BaseModel):
	"""Accepts rows as stored (ISO timestamps) and as broadcast (epoch ms)."""

	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	id: str = Field(..., min_length=1, max_length=64)
	user_id: str = Field(..., min_length=1, validation_alias=AliasChoices("user_id", "userId"))
	user_name: str = Field(default="", validation_alias=AliasChoices("user_name", "userName"))
	content: str = Field(..., min_length=1)
	timestamp: Union[int, datetime]

	def to_model(self) -> Suggestion:
		return Suggestion(
			id=self.id,
			user_id=self.user_id,
			user_name=self.user_name,
			content=self.content,
			timestamp=to_ms(self.timestamp),
		)
