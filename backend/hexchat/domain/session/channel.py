"""One subscribed room: channel wiring, message sync and presence together.

A session holds three of these (district, city, world) with identical
behaviour; only the room id and scale differ.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Callable, Optional

from hexchat.domain.chat.events import (
	EventKind,
	EventValidationError,
	NewMessageEvent,
	PresenceSyncEvent,
	RecallEvent,
	RowUpdatedEvent,
	encode_presence,
	parse_event,
)
from hexchat.domain.chat.models import Message, RoomState, UserPresence
from hexchat.domain.chat.store import RoomStore
from hexchat.domain.chat.sync import RoomSync
from hexchat.domain.geo.buckets import ScaleLevel
from hexchat.domain.presence.indicator import TypingDebouncer
from hexchat.domain.presence.tracker import PresenceTracker
from hexchat.infra.realtime import Channel, Realtime, RealtimeError
from hexchat.obs import metrics as obs_metrics
from hexchat.settings import settings

logger = logging.getLogger(__name__)

PresenceFactory = Callable[["RoomChannel"], UserPresence]
MessageListener = Callable[["RoomChannel", Message], None]


class RoomChannel:
	def __init__(
		self,
		scale: ScaleLevel,
		room_id: str,
		*,
		realtime: Realtime,
		store: RoomStore,
		presence_factory: PresenceFactory,
		on_message: Optional[MessageListener] = None,
		tick_seconds: Optional[float] = None,
	) -> None:
		self.realtime = realtime
		self.sync = RoomSync(scale, room_id, store)
		self.presence = PresenceTracker(self.sync.state)
		self.typing = TypingDebouncer(self._publish_typing)
		self.last_read_timestamp: Optional[int] = None
		self.tick_seconds = settings.presence_tick_seconds if tick_seconds is None else tick_seconds
		self._presence_factory = presence_factory
		self._on_message = on_message
		self._channel: Optional[Channel] = None
		self._keepalive: Optional[asyncio.Task] = None

	@property
	def room_id(self) -> str:
		return self.sync.room_id

	@property
	def scale(self) -> ScaleLevel:
		return self.sync.scale

	@property
	def state(self) -> RoomState:
		return self.sync.state

	@property
	def is_open(self) -> bool:
		return self._channel is not None

	async def open(self) -> bool:
		"""Subscribe, load the latest page, then publish our presence."""
		if self._channel is not None:
			return True
		room_id = self.room_id
		channel = self.realtime.channel(room_id)
		for kind in EventKind:
			channel.on(kind.value, self._handler(kind.value, channel))
		try:
			await channel.subscribe()
		except RealtimeError as exc:
			logger.warning("subscribe failed room=%s: %s", self.room_id, exc)
			return False
		if self._channel is not None or self.room_id != room_id:
			# Another open won the race while we were subscribing
			await channel.unsubscribe()
			obs_metrics.inc_stale_response("open")
			return self._channel is not None
		self._channel = channel
		obs_metrics.channel_subscribed()
		await self.sync.initialize()
		if self._channel is not channel:
			# Closed or reopened while the first page was loading
			obs_metrics.inc_stale_response("open")
			return False
		self.sync.mark_live()
		await self.track()
		if self._channel is not channel:
			obs_metrics.inc_stale_response("open")
			return False
		if self.tick_seconds > 0:
			self._keepalive = asyncio.create_task(self._presence_keepalive(), name=f"presence-tick:{self.room_id}")
		return True

	async def close(self) -> None:
		task = self._keepalive
		self._keepalive = None
		if task is not None:
			task.cancel()
			with suppress(asyncio.CancelledError):
				await task
		await self.typing.stop(publish=False)
		channel = self._channel
		self._channel = None
		if channel is None:
			return
		await channel.unsubscribe()
		obs_metrics.channel_unsubscribed()

	async def reopen(self, room_id: Optional[str] = None, *, reason: str = "resume") -> bool:
		"""Full resubscribe and refetch, optionally moving to another room.

		Counters survive a resubscribe of the same room; a new room starts clean.
		"""
		same_room = room_id is None or room_id == self.room_id
		unread, mentions = self.state.unread_count, self.state.mention_count
		await self.close()
		self.sync.reset(room_id)
		self.presence.reset()
		self.last_read_timestamp = None
		if same_room:
			self.state.unread_count, self.state.mention_count = unread, mentions
		obs_metrics.inc_resubscribe(reason)
		logger.info("room resubscribe room=%s scale=%s reason=%s", self.room_id, self.scale.value, reason)
		return await self.open()

	def _handler(self, kind: str, channel: Channel):
		async def handle(payload: dict) -> None:
			await self._on_event(kind, channel, payload)

		return handle

	async def _on_event(self, kind: str, channel: Channel, payload: dict) -> None:
		if channel is not self._channel:
			obs_metrics.inc_stale_response("event")
			return
		try:
			event = parse_event(kind, self.room_id, payload)
		except EventValidationError as exc:
			logger.warning("dropping invalid event room=%s: %s", self.room_id, exc)
			return
		if isinstance(event, NewMessageEvent):
			if self.sync.accept(event.message):
				obs_metrics.inc_message_received(self.scale.value)
				if self._on_message is not None:
					self._on_message(self, event.message)
		elif isinstance(event, RecallEvent):
			self.sync.mark_recalled(event.message_id)
		elif isinstance(event, RowUpdatedEvent):
			self.sync.apply_row_update(event.message)
		elif isinstance(event, PresenceSyncEvent):
			self.presence.apply_sync(event.presences)

	async def track(self) -> bool:
		channel = self._channel
		if channel is None:
			return False
		presence = self._presence_factory(self)
		try:
			await channel.track(encode_presence(presence))
		except RealtimeError as exc:
			logger.warning("presence track failed room=%s: %s", self.room_id, exc)
			return False
		return True

	async def send(self, kind: EventKind, payload: dict) -> bool:
		channel = self._channel
		if channel is None:
			logger.warning("dropping %s broadcast, room=%s not subscribed", kind.value, self.room_id)
			return False
		try:
			await channel.send(kind.value, payload)
		except RealtimeError as exc:
			logger.warning("broadcast failed room=%s kind=%s: %s", self.room_id, kind.value, exc)
			return False
		return True

	async def _publish_typing(self, is_typing: bool) -> None:
		await self.track()

	def advance_read(self) -> bool:
		newest = self.state.newest_timestamp()
		if newest is None:
			return False
		if self.last_read_timestamp is not None and newest <= self.last_read_timestamp:
			return False
		self.last_read_timestamp = newest
		return True

	def read_count(self, message: Message, *, viewer_id: str) -> int:
		return self.presence.read_count(message, viewer_id=viewer_id)

	async def _presence_keepalive(self) -> None:
		"""Re-track presence so the marker jitters and the TTL stays fresh."""
		interval = max(0.05, float(self.tick_seconds))
		try:
			while True:
				await asyncio.sleep(interval)
				await self.track()
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.exception("presence keepalive failed room=%s", self.room_id)
