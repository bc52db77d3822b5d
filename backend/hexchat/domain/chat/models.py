"""Domain models for room messages and per-scale room state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Literal, Optional

from hexchat.domain.geo.buckets import ScaleLevel

MessageType = Literal["text", "image", "voice"]

MESSAGE_TYPES = ("text", "image", "voice")


def now_ms() -> int:
	return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class ReplyRef:
	user_name: str
	content: str

	def to_dict(self) -> dict:
		return {"user_name": self.user_name, "content": self.content}


@dataclass(slots=True)
class Message:
	id: str
	user_id: str
	user_name: str
	avatar_seed: str
	content: str
	timestamp: int
	type: MessageType = "text"
	country_code: Optional[str] = None
	is_recalled: bool = False
	is_gm: bool = False
	reply_to: Optional[ReplyRef] = None
	voice_duration: Optional[float] = None

	@property
	def display_content(self) -> Optional[str]:
		"""Content safe to render; recalled messages keep their body but never show it."""
		if self.is_recalled:
			return None
		return self.content

	@property
	def image_urls(self) -> List[str]:
		if self.type != "image":
			return []
		return [part for part in self.content.split(",") if part]

	def mentions(self, user_name: str) -> bool:
		# Plain substring match; "@ann" also matches "@anna"
		return bool(user_name) and f"@{user_name}" in self.content

	def copy(self, **changes) -> "Message":
		return replace(self, **changes)

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"user_id": self.user_id,
			"user_name": self.user_name,
			"avatar_seed": self.avatar_seed,
			"content": self.content,
			"timestamp": self.timestamp,
			"type": self.type,
			"country_code": self.country_code,
			"is_recalled": self.is_recalled,
			"is_gm": self.is_gm,
			"reply_to": self.reply_to.to_dict() if self.reply_to else None,
			"voice_duration": self.voice_duration,
		}


@dataclass(slots=True)
class UserPresence:
	user_id: str
	user_name: str
	avatar_seed: str
	lat: float
	lng: float
	online_at: int
	is_gm: bool = False
	is_typing: bool = False
	last_read_timestamp: Optional[int] = None

	def to_dict(self) -> dict:
		return {
			"user_id": self.user_id,
			"user_name": self.user_name,
			"avatar_seed": self.avatar_seed,
			"lat": self.lat,
			"lng": self.lng,
			"online_at": self.online_at,
			"is_gm": self.is_gm,
			"is_typing": self.is_typing,
			"last_read_timestamp": self.last_read_timestamp,
		}


@dataclass(slots=True)
class RoomState:
	"""Client-held view of one scale's room.

	``messages`` is kept sorted ascending by timestamp with unique ids.
	"""

	scale: ScaleLevel
	room_id: str = ""
	messages: List[Message] = field(default_factory=list)
	has_older: bool = True
	has_newer: bool = False
	unread_count: int = 0
	mention_count: int = 0
	online_users: Dict[str, UserPresence] = field(default_factory=dict)

	def find(self, message_id: str) -> Optional[Message]:
		for message in self.messages:
			if message.id == message_id:
				return message
		return None

	def oldest_timestamp(self) -> Optional[int]:
		return self.messages[0].timestamp if self.messages else None

	def newest_timestamp(self) -> Optional[int]:
		return self.messages[-1].timestamp if self.messages else None

	def clear_counters(self) -> None:
		self.unread_count = 0
		self.mention_count = 0
