"""Wire payloads for the per-room event bus.

Every payload crossing a channel is validated here before it reaches room
state. Camel-case keys written by older web clients are accepted on input;
output always uses the snake-case field names.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Literal, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from hexchat.domain.chat.models import Message, ReplyRef, UserPresence

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
	NEW_MESSAGE = "new-message"
	RECALL = "recall"
	PRESENCE_SYNC = "presence-sync"
	ROW_UPDATED = "row-updated"


class EventValidationError(ValueError):
	def __init__(self, kind: str, errors: str) -> None:
		super().__init__(f"invalid {kind} payload: {errors}")
		self.kind = kind


def _alias(*names: str):
	return AliasChoices(*names)


class _Payload(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ReplyPayload(_Payload):
	user_name: str = Field(..., validation_alias=_alias("user_name", "userName"))
	content: str


class MessagePayload(_Payload):
	id: str = Field(..., min_length=1, max_length=64)
	user_id: str = Field(..., min_length=1, validation_alias=_alias("user_id", "userId"))
	user_name: str = Field(..., validation_alias=_alias("user_name", "userName"))
	avatar_seed: str = Field(default="", validation_alias=_alias("avatar_seed", "avatarSeed", "userAvatarSeed"))
	content: str
	timestamp: int = Field(..., ge=0)
	type: Literal["text", "image", "voice"] = "text"
	country_code: Optional[str] = Field(default=None, validation_alias=_alias("country_code", "countryCode"))
	is_recalled: bool = Field(default=False, validation_alias=_alias("is_recalled", "isRecalled"))
	is_gm: bool = Field(default=False, validation_alias=_alias("is_gm", "isGM"))
	reply_to: Optional[ReplyPayload] = Field(default=None, validation_alias=_alias("reply_to", "replyTo"))
	voice_duration: Optional[float] = Field(default=None, ge=0, validation_alias=_alias("voice_duration", "voiceDuration"))

	def to_model(self) -> Message:
		reply = ReplyRef(self.reply_to.user_name, self.reply_to.content) if self.reply_to else None
		return Message(
			id=self.id,
			user_id=self.user_id,
			user_name=self.user_name,
			avatar_seed=self.avatar_seed,
			content=self.content,
			timestamp=self.timestamp,
			type=self.type,
			country_code=self.country_code,
			is_recalled=self.is_recalled,
			is_gm=self.is_gm,
			reply_to=reply,
			voice_duration=self.voice_duration,
		)

	@classmethod
	def from_model(cls, message: Message) -> "MessagePayload":
		return cls.model_validate(message.to_dict())


class RecallPayload(_Payload):
	id: str = Field(..., min_length=1)


class PresencePayload(_Payload):
	user_id: str = Field(..., min_length=1, validation_alias=_alias("user_id", "userId"))
	user_name: str = Field(default="", validation_alias=_alias("user_name", "userName"))
	avatar_seed: str = Field(default="", validation_alias=_alias("avatar_seed", "avatarSeed"))
	lat: float = Field(..., ge=-90.0, le=90.0)
	lng: float = Field(..., ge=-180.0, le=180.0)
	online_at: int = Field(default=0, ge=0, validation_alias=_alias("online_at", "onlineAt"))
	is_gm: bool = Field(default=False, validation_alias=_alias("is_gm", "isGM"))
	is_typing: bool = Field(default=False, validation_alias=_alias("is_typing", "isTyping"))
	last_read_timestamp: Optional[int] = Field(default=None, ge=0, validation_alias=_alias("last_read_timestamp", "lastReadTimestamp"))

	def to_model(self) -> UserPresence:
		return UserPresence(**self.model_dump())

	@classmethod
	def from_model(cls, presence: UserPresence) -> "PresencePayload":
		return cls.model_validate(presence.to_dict())


class PresenceSyncPayload(_Payload):
	# Entries are checked one by one so a single bad peer cannot blank the room
	presences: List[Any] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class NewMessageEvent:
	room_id: str
	message: Message
	kind: EventKind = EventKind.NEW_MESSAGE


@dataclass(frozen=True, slots=True)
class RecallEvent:
	room_id: str
	message_id: str
	kind: EventKind = EventKind.RECALL


@dataclass(frozen=True, slots=True)
class PresenceSyncEvent:
	room_id: str
	presences: Tuple[UserPresence, ...]
	kind: EventKind = EventKind.PRESENCE_SYNC


@dataclass(frozen=True, slots=True)
class RowUpdatedEvent:
	room_id: str
	message: Message
	kind: EventKind = EventKind.ROW_UPDATED


RoomEvent = Union[NewMessageEvent, RecallEvent, PresenceSyncEvent, RowUpdatedEvent]


def parse_event(kind: str, room_id: str, payload: dict) -> RoomEvent:
	"""Validate a raw channel payload into a typed room event."""
	try:
		event_kind = EventKind(kind)
	except ValueError as exc:
		raise EventValidationError(kind, "unknown event kind") from exc
	try:
		if event_kind is EventKind.NEW_MESSAGE:
			return NewMessageEvent(room_id, MessagePayload.model_validate(payload).to_model())
		if event_kind is EventKind.ROW_UPDATED:
			return RowUpdatedEvent(room_id, MessagePayload.model_validate(payload).to_model())
		if event_kind is EventKind.RECALL:
			return RecallEvent(room_id, RecallPayload.model_validate(payload).id)
		sync = PresenceSyncPayload.model_validate(payload)
		return PresenceSyncEvent(room_id, _parse_presences(room_id, sync.presences))
	except ValidationError as exc:
		raise EventValidationError(kind, str(exc)) from exc


def _parse_presences(room_id: str, entries: List[Any]) -> Tuple[UserPresence, ...]:
	presences: List[UserPresence] = []
	for entry in entries:
		try:
			presences.append(PresencePayload.model_validate(entry).to_model())
		except ValidationError as exc:
			logger.warning("dropping invalid presence entry room=%s errors=%d", room_id, exc.error_count())
	return tuple(presences)


def encode_message(message: Message) -> dict:
	return MessagePayload.from_model(message).model_dump()


def encode_recall(message_id: str) -> dict:
	return RecallPayload(id=message_id).model_dump()


def encode_presence(presence: UserPresence) -> dict:
	return PresencePayload.from_model(presence).model_dump()


def encode_presence_sync(presences: List[dict]) -> dict:
	"""Build a snapshot payload from already-encoded presence dicts."""
	return {"presences": presences}
