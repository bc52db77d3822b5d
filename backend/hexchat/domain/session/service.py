"""Chat session: the explicitly constructed entry point of the chat core.

A session owns the anchor coordinate, the three room channels derived from
it and the local identity. Collaborators (room store, realtime transport,
blob store, prefs) are injected; nothing here is module-level state.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import ulid

from hexchat import obs
from hexchat.domain.chat.attachments import (
	AttachmentValidationError,
	Upload,
	join_urls,
	placeholder_content,
	validate_text,
	validate_uploads,
)
from hexchat.domain.chat.events import EventKind, encode_message, encode_recall
from hexchat.domain.chat.models import Message, MessageType, ReplyRef, RoomState, UserPresence, now_ms
from hexchat.domain.chat.store import RoomStore, StoreError
from hexchat.domain.geo import buckets, naming
from hexchat.domain.geo.buckets import Coordinate, ScaleLevel
from hexchat.domain.geo.fuzz import PrivacyFuzzer
from hexchat.domain.geo.locate import LocationProvider, acquire_fix
from hexchat.domain.rooms import policy
from hexchat.domain.rooms.models import RoomSet
from hexchat.domain.rooms.resolver import RoomMembershipResolver
from hexchat.domain.session.channel import RoomChannel
from hexchat.domain.session.notices import NoticeBoard, NoticeCode, NoticeListener
from hexchat.domain.suggestions import Suggestion, SuggestionBoard, SuggestionStore
from hexchat.infra.blob import BlobStore, BlobUploadError
from hexchat.infra.prefs import PrefsStore, normalise_display_name, random_display_name, random_user_id
from hexchat.infra.realtime import Realtime
from hexchat.obs import logging as obs_logging
from hexchat.obs import metrics as obs_metrics
from hexchat.settings import settings

logger = logging.getLogger(__name__)

REPLY_EXCERPT_LEN = 80

CountryLookup = Callable[[Coordinate], Awaitable[Optional[str]]]


@dataclass(slots=True)
class Identity:
	user_id: str
	user_name: str
	avatar_seed: str
	is_gm: bool = False
	country_code: Optional[str] = None


def new_message_id() -> str:
	return ulid.new().str


class ChatSession:
	def __init__(
		self,
		*,
		store: RoomStore,
		realtime: Realtime,
		blobs: Optional[BlobStore] = None,
		prefs: Optional[PrefsStore] = None,
		identity: Optional[Identity] = None,
		resolver: Optional[RoomMembershipResolver] = None,
		fuzzer: Optional[PrivacyFuzzer] = None,
		clock: Callable[[], int] = now_ms,
		presence_tick_seconds: Optional[float] = None,
		country_lookup: Optional[CountryLookup] = None,
		suggestion_store: Optional[SuggestionStore] = None,
	) -> None:
		self.store = store
		self.realtime = realtime
		self.blobs = blobs
		self.prefs = prefs
		self.identity = identity
		self.resolver = resolver or RoomMembershipResolver()
		self.fuzzer = fuzzer or PrivacyFuzzer()
		self.notices = NoticeBoard()
		self.active_scale = ScaleLevel.WORLD
		self.anchor: Optional[Coordinate] = None
		self.rooms: Optional[RoomSet] = None
		self.channels: Dict[ScaleLevel, RoomChannel] = {}
		self.online_at = 0
		self._clock = clock
		self._tick_seconds = presence_tick_seconds
		self._country_lookup = country_lookup or naming.lookup_country_code
		self.suggestion_store = suggestion_store or SuggestionStore()
		self.suggestion_board: Optional[SuggestionBoard] = None

	# lifecycle

	@property
	def user(self) -> Identity:
		if self.identity is None:
			raise policy.ChatPolicyError("session_not_started")
		return self.identity

	def _bootstrap_identity(self) -> Identity:
		if self.prefs is not None:
			prefs = self.prefs.ensure_identity()
			return Identity(user_id=prefs.user_id, user_name=prefs.user_name, avatar_seed=prefs.avatar_seed)
		return Identity(user_id=random_user_id(), user_name=random_display_name(), avatar_seed=random_user_id(12))

	async def start(self, provider: Optional[LocationProvider] = None, *, zoom: Optional[float] = None) -> RoomSet:
		"""Acquire a fix, fuzz it once, and subscribe all three rooms."""
		obs.init()
		if self.identity is None:
			self.identity = self._bootstrap_identity()
		self.online_at = self._clock()
		anchor = await self._acquire_anchor(provider)
		if zoom is not None:
			self.set_zoom(zoom)
		rooms = await self._apply_anchor(anchor)
		logger.info("chat session started user=%s rooms=%s", self.user.user_id, rooms)
		return rooms

	async def close(self) -> None:
		channels = list(self.channels.values())
		await asyncio.gather(*(channel.close() for channel in channels))
		self.channels.clear()
		if self.suggestion_board is not None:
			await self.suggestion_board.close()
		logger.info("chat session closed user=%s", self.identity.user_id if self.identity else None)

	async def _acquire_anchor(self, provider: Optional[LocationProvider]) -> Coordinate:
		fix = await acquire_fix(provider)
		if fix.fallback:
			self.notices.emit(NoticeCode.GEO_FALLBACK)
			if self.prefs is not None:
				stored = self.prefs.load().last_location
				if stored is not None:
					# Already fuzzed when it was stored
					return Coordinate(*stored)
			return self.fuzzer.fuzz(fix.coord)
		anchor = self.fuzzer.fuzz(fix.coord)
		if self.prefs is not None:
			self.prefs.update(last_location=(anchor.lat, anchor.lng))
		return anchor

	async def _apply_anchor(self, anchor: Coordinate) -> RoomSet:
		if anchor != self.anchor:
			# Derived once per anchor and stamped on every message we send
			self.user.country_code = await self._country_lookup(anchor)
		self.anchor = anchor
		rooms = self.resolver.resolve(anchor)
		self.rooms = rooms
		pending = []
		for scale, room_id in rooms.items():
			channel = self.channels.get(scale)
			if channel is None:
				channel = self._make_channel(scale, room_id)
				self.channels[scale] = channel
				pending.append(channel.open())
			elif channel.room_id != room_id:
				pending.append(channel.reopen(room_id, reason="relocate"))
		if pending:
			await asyncio.gather(*pending)
		return rooms

	def _make_channel(self, scale: ScaleLevel, room_id: str) -> RoomChannel:
		return RoomChannel(
			scale,
			room_id,
			realtime=self.realtime,
			store=self.store,
			presence_factory=self._presence_for,
			on_message=self._on_incoming,
			tick_seconds=self._tick_seconds,
		)

	async def relocate(self, provider: Optional[LocationProvider]) -> RoomSet:
		"""New GPS fix, new fuzz, and resubscribe every scale whose room moved."""
		anchor = await self._acquire_anchor(provider)
		return await self._apply_anchor(anchor)

	async def resume(self) -> None:
		"""Full resubscribe and refetch after the app was hidden or offline."""
		await asyncio.gather(*(channel.reopen(reason="resume") for channel in self.channels.values()))

	# scales and rooms

	def channel(self, scale: Optional[ScaleLevel] = None) -> RoomChannel:
		channel = self.channels.get(scale or self.active_scale)
		if channel is None:
			raise policy.ChatPolicyError("session_not_started")
		return channel

	def room_state(self, scale: Optional[ScaleLevel] = None) -> RoomState:
		return self.channel(scale).state

	def set_zoom(self, zoom: float) -> ScaleLevel:
		scale = buckets.scale_level(zoom)
		self.set_active_scale(scale)
		return scale

	def set_active_scale(self, scale: ScaleLevel) -> None:
		if scale is self.active_scale:
			return
		self.active_scale = scale
		channel = self.channels.get(scale)
		if channel is None:
			return
		channel.state.clear_counters()
		channel.presence.reset_read_marks()

	async def join_hex(self, target_hex: str, scale: ScaleLevel) -> bool:
		"""Switch one scale to a clicked hex. Returns False when out of reach."""
		if self.anchor is None or self.rooms is None:
			raise policy.ChatPolicyError("session_not_started")
		if scale is ScaleLevel.WORLD:
			return False
		if not self.resolver.can_join_hex(self.anchor, target_hex, scale, is_admin=self.user.is_gm):
			logger.info("hex join refused user=%s scale=%s", self.user.user_id, scale.value)
			return False
		room_id = buckets.format_room_id(scale, target_hex)
		channel = self.channel(scale)
		if channel.room_id == room_id:
			return True
		self.rooms = self.rooms.replace(scale, room_id)
		await channel.reopen(room_id, reason="hex_join")
		return True

	# presence

	def _presence_for(self, channel: RoomChannel) -> UserPresence:
		user = self.user
		marker = self.fuzzer.micro_fuzz(self.anchor) if self.anchor is not None else Coordinate(0.0, 0.0)
		return UserPresence(
			user_id=user.user_id,
			user_name=user.user_name,
			avatar_seed=user.avatar_seed,
			lat=marker.lat,
			lng=marker.lng,
			online_at=self.online_at,
			is_gm=user.is_gm,
			is_typing=channel.typing.is_typing,
			last_read_timestamp=channel.last_read_timestamp,
		)

	async def _retrack_all(self) -> None:
		await asyncio.gather(*(channel.track() for channel in self.channels.values()))

	async def keystroke(self, scale: Optional[ScaleLevel] = None) -> None:
		await self.channel(scale).typing.keystroke()

	async def mark_read(self, scroll_offset: float, scale: Optional[ScaleLevel] = None) -> bool:
		"""Advance our read mark when the view sits near the live edge."""
		if abs(scroll_offset) >= settings.read_near_bottom_px:
			return False
		channel = self.channel(scale)
		if not channel.advance_read():
			return False
		await channel.track()
		return True

	def read_count(self, message: Message, scale: Optional[ScaleLevel] = None) -> int:
		return self.channel(scale).read_count(message, viewer_id=self.user.user_id)

	def typing_users(self, scale: Optional[ScaleLevel] = None) -> List[UserPresence]:
		return self.channel(scale).presence.typing_users(exclude=self.user.user_id)

	def _on_incoming(self, channel: RoomChannel, message: Message) -> None:
		if channel.scale is self.active_scale:
			return
		channel.state.unread_count += 1
		if message.mentions(self.user.user_name):
			channel.state.mention_count += 1

	# sending

	def _compose(
		self,
		content: str,
		kind: MessageType,
		*,
		reply_to: Optional[Message] = None,
		voice_duration: Optional[float] = None,
	) -> Message:
		user = self.user
		reply = None
		if reply_to is not None:
			reply = ReplyRef(user_name=reply_to.user_name, content=(reply_to.display_content or "")[:REPLY_EXCERPT_LEN])
		return Message(
			id=new_message_id(),
			user_id=user.user_id,
			user_name=user.user_name,
			avatar_seed=user.avatar_seed,
			content=content,
			timestamp=self._clock(),
			type=kind,
			country_code=user.country_code,
			is_gm=user.is_gm,
			reply_to=reply,
			voice_duration=voice_duration,
		)

	def _persist_failed(self, op: str, exc: StoreError) -> None:
		obs_metrics.inc_persist_failure(op, "schema" if exc.schema_mismatch else "backend")
		if exc.schema_mismatch:
			logger.error("message store schema mismatch during %s: %s", op, exc)
			self.notices.emit(NoticeCode.SCHEMA_MISMATCH, detail=str(exc), blocking=True)
		else:
			logger.warning("message %s not persisted: %s", op, exc)

	async def _deliver(self, channel: RoomChannel, message: Message) -> None:
		# Persistence failures never block live delivery
		token = obs_logging.bind_context(room_id=channel.room_id, user_id=message.user_id)
		try:
			try:
				await self.store.insert_message(channel.room_id, message)
			except StoreError as exc:
				self._persist_failed("insert", exc)
			await channel.send(EventKind.NEW_MESSAGE, encode_message(message))
			obs_metrics.inc_message_sent(channel.scale.value, message.type)
		finally:
			obs_logging.reset_context(token)

	async def send_text(
		self,
		content: str,
		*,
		reply_to: Optional[Message] = None,
		scale: Optional[ScaleLevel] = None,
	) -> Message:
		text = validate_text(content)
		channel = self.channel(scale)
		message = self._compose(text, "text", reply_to=reply_to)
		channel.sync.add_local(message)
		await self._deliver(channel, message)
		await channel.typing.stop()
		return message

	async def send_images(self, uploads: Sequence[Upload], *, scale: Optional[ScaleLevel] = None) -> Optional[Message]:
		"""Optimistic placeholder, upload every image, then deliver the URL list.

		Any failed upload removes the placeholder and nothing is sent.
		"""
		if not self._check_uploads("image", uploads):
			return None
		channel = self.channel(scale)
		placeholder = self._compose(placeholder_content(uploads), "image")
		channel.sync.add_local(placeholder)
		try:
			urls = await asyncio.gather(*(self._blob_store().upload(upload, kind="image") for upload in uploads))
		except BlobUploadError as exc:
			channel.sync.remove(placeholder.id)
			self.notices.emit(NoticeCode.UPLOAD_FAILED, detail=exc.reason)
			return None
		message = placeholder.copy(content=join_urls(urls))
		if not channel.sync.apply_row_update(message):
			channel.sync.add_local(message)
		await self._deliver(channel, message)
		return message

	async def send_voice(
		self,
		upload: Upload,
		duration: float,
		*,
		scale: Optional[ScaleLevel] = None,
	) -> Optional[Message]:
		if not self._check_uploads("voice", [upload]):
			return None
		channel = self.channel(scale)
		try:
			url = await self._blob_store().upload(upload, kind="voice")
		except BlobUploadError as exc:
			self.notices.emit(NoticeCode.UPLOAD_FAILED, detail=exc.reason)
			return None
		message = self._compose(url, "voice", voice_duration=max(0.0, float(duration)))
		channel.sync.add_local(message)
		await self._deliver(channel, message)
		return message

	def _check_uploads(self, kind, uploads: Sequence[Upload]) -> bool:
		try:
			validate_uploads(kind, uploads)
		except AttachmentValidationError as exc:
			self.notices.emit(NoticeCode.ATTACHMENT_REJECTED, detail=exc.code)
			return False
		return True

	def _blob_store(self) -> BlobStore:
		if self.blobs is None:
			self.blobs = BlobStore()
		return self.blobs

	# moderation

	async def recall(self, message_id: str, *, scale: Optional[ScaleLevel] = None) -> bool:
		channel = self.channel(scale)
		message = channel.state.find(message_id)
		if message is None:
			return False
		policy.ensure_author(self.user.user_id, message.user_id, is_admin=self.user.is_gm)
		channel.sync.mark_recalled(message_id)
		try:
			await self.store.update_message(message_id, is_recalled=True)
		except StoreError as exc:
			self._persist_failed("recall", exc)
		await channel.send(EventKind.RECALL, encode_recall(message_id))
		return True

	async def delete(self, message_id: str, *, scale: Optional[ScaleLevel] = None) -> None:
		"""Admin hard delete. Peers see the gap on their next fetch."""
		policy.ensure_admin(self.user.is_gm, "delete")
		channel = self.channel(scale)
		try:
			await self.store.delete_message(message_id)
		except StoreError as exc:
			self._persist_failed("delete", exc)
			return
		channel.sync.remove(message_id)
		logger.info("message deleted by admin user=%s room=%s", self.user.user_id, channel.room_id)

	async def elevate(self, password: str) -> bool:
		expected = settings.admin_password
		if expected is None or not hmac.compare_digest(password.encode("utf-8"), expected.get_secret_value().encode("utf-8")):
			self.notices.emit(NoticeCode.ADMIN_REJECTED)
			return False
		self.user.is_gm = True
		logger.info("admin mode enabled user=%s", self.user.user_id)
		await self._retrack_all()
		return True

	async def demote(self) -> None:
		if not self.user.is_gm:
			return
		self.user.is_gm = False
		await self._retrack_all()

	async def rename(self, new_name: str) -> bool:
		"""Change the display name everywhere we can reach.

		Presence is re-tracked, prefs updated, and our own held messages are
		rewritten, persisted and broadcast as row updates.
		"""
		name = normalise_display_name(new_name)
		if name is None:
			raise policy.ChatPolicyError("display_name_invalid")
		user = self.user
		if name == user.user_name:
			return False
		user.user_name = name
		if self.prefs is not None:
			self.prefs.update(user_name=name)
		for channel in self.channels.values():
			for message in list(channel.state.messages):
				if message.user_id != user.user_id:
					continue
				updated = message.copy(user_name=name)
				channel.sync.apply_row_update(updated)
				try:
					await self.store.update_message(message.id, user_name=name)
				except StoreError as exc:
					self._persist_failed("rename", exc)
				await channel.send(EventKind.ROW_UPDATED, encode_message(updated))
		await self._retrack_all()
		return True

	# history

	async def load_older(self, scale: Optional[ScaleLevel] = None) -> int:
		return await self.channel(scale).sync.load_older()

	async def enter_climbing(self, scale: Optional[ScaleLevel] = None) -> bool:
		return await self.channel(scale).sync.enter_climbing()

	async def load_newer(self, scale: Optional[ScaleLevel] = None) -> int:
		return await self.channel(scale).sync.load_newer()

	async def exit_climbing(self, scale: Optional[ScaleLevel] = None) -> bool:
		return await self.channel(scale).sync.exit_climbing()

	def add_notice_listener(self, listener: NoticeListener) -> None:
		self.notices.add_listener(listener)

	# suggestion board

	def _suggestions(self) -> SuggestionBoard:
		if self.suggestion_board is None:
			self.suggestion_board = SuggestionBoard(
				store=self.suggestion_store,
				realtime=self.realtime,
				prefs=self.prefs,
				clock=self._clock,
			)
		return self.suggestion_board

	async def open_suggestions(self) -> List[Suggestion]:
		board = self._suggestions()
		await board.open()
		return list(board.suggestions)

	async def close_suggestions(self) -> None:
		if self.suggestion_board is not None:
			await self.suggestion_board.close()

	async def submit_suggestion(self, content: str) -> Optional[Suggestion]:
		"""Post to the global board; store failures surface as a notice."""
		user = self.user
		try:
			return await self._suggestions().submit(user.user_id, user.user_name, content)
		except StoreError as exc:
			obs_metrics.inc_suggestion("failed")
			logger.warning("suggestion not stored user=%s: %s", user.user_id, exc)
			self.notices.emit(NoticeCode.SUGGESTION_FAILED, detail=str(exc))
			return None
