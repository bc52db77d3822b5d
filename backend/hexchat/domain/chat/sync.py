"""Per-room message synchronization.

``RoomSync`` owns one scale's ``RoomState`` and is the only writer of its
message list. All mutation happens on the event loop; the in-flight flags and
the generation counter are the only coordination needed.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, List, Optional

from hexchat.domain.chat.models import Message, RoomState
from hexchat.domain.chat.store import BACKWARD, FORWARD, RoomStore, StoreError
from hexchat.domain.geo.buckets import ScaleLevel
from hexchat.obs import metrics as obs_metrics
from hexchat.settings import settings

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
	INITIALIZING = "initializing"
	LIVE = "live"
	LOADING_OLDER = "loading_older"


def merge_messages(current: Iterable[Message], incoming: Iterable[Message]) -> List[Message]:
	"""Union by id (first copy wins), sorted ascending by timestamp."""
	seen = set()
	merged: List[Message] = []
	for message in list(current) + list(incoming):
		if message.id in seen:
			continue
		seen.add(message.id)
		merged.append(message)
	merged.sort(key=lambda item: item.timestamp)
	return merged


class RoomSync:
	def __init__(
		self,
		scale: ScaleLevel,
		room_id: str,
		store: RoomStore,
		*,
		page_size: Optional[int] = None,
		max_messages: Optional[int] = None,
	) -> None:
		self.store = store
		self.page_size = page_size or settings.page_size
		self.max_messages = max_messages or settings.max_messages
		self.state = RoomState(scale=scale, room_id=room_id)
		self.phase = SyncState.INITIALIZING
		self.climbing = False
		self.loading_older = False
		self.loading_newer = False
		self.generation = 0

	@property
	def room_id(self) -> str:
		return self.state.room_id

	@property
	def scale(self) -> ScaleLevel:
		return self.state.scale

	@property
	def messages(self) -> List[Message]:
		return self.state.messages

	def _is_current(self, generation: int, op: str) -> bool:
		if generation == self.generation:
			return True
		logger.debug("dropping stale %s result room=%s", op, self.room_id)
		obs_metrics.inc_stale_response(op)
		return False

	def _truncate(self) -> None:
		overflow = len(self.state.messages) - self.max_messages
		if overflow > 0:
			del self.state.messages[:overflow]
			self.state.has_older = True

	def reset(self, room_id: Optional[str] = None) -> None:
		"""Forget everything held for the room; pending fetches become stale."""
		self.generation += 1
		if room_id is not None:
			self.state.room_id = room_id
		self.state.messages = []
		self.state.has_older = True
		self.state.has_newer = False
		self.state.online_users = {}
		self.state.clear_counters()
		self.phase = SyncState.INITIALIZING
		self.climbing = False
		self.loading_older = False
		self.loading_newer = False

	async def initialize(self) -> bool:
		"""Load the latest page. Returns False when the fetch failed or went stale."""
		generation = self.generation
		try:
			page = await self.store.fetch_messages(self.room_id, direction=BACKWARD, limit=self.page_size)
		except StoreError as exc:
			logger.warning("initial fetch failed room=%s: %s", self.room_id, exc)
			obs_metrics.inc_pagination("initial", "error")
			return False
		if not self._is_current(generation, "initial"):
			return False
		# Live arrivals and optimistic sends made while the fetch was pending are kept
		self.state.messages = merge_messages(self.state.messages, page)
		self.state.has_older = len(page) >= self.page_size
		self._truncate()
		obs_metrics.inc_pagination("initial", "ok")
		return True

	def mark_live(self) -> None:
		if self.phase is SyncState.INITIALIZING:
			self.phase = SyncState.LIVE

	def accept(self, message: Message) -> bool:
		"""Merge a broadcast message. Returns True when the id was not held yet.

		While climbing the view is a chronological replay, so live messages are
		not merged; they are reported as new so counters keep accruing.
		"""
		if self.state.find(message.id) is not None:
			obs_metrics.inc_message_duplicate(self.scale.value)
			return False
		if self.climbing:
			return True
		self.state.messages.append(message)
		self.state.messages.sort(key=lambda item: item.timestamp)
		self._truncate()
		return True

	def add_local(self, message: Message) -> bool:
		"""Optimistically append an own message before it is persisted.

		Ignored while climbing: the replay holds store pages only and pages
		forward from its newest entry.
		"""
		if self.climbing or self.state.find(message.id) is not None:
			return False
		self.state.messages.append(message)
		self.state.messages.sort(key=lambda item: item.timestamp)
		self._truncate()
		return True

	def remove(self, message_id: str) -> Optional[Message]:
		for idx, message in enumerate(self.state.messages):
			if message.id == message_id:
				return self.state.messages.pop(idx)
		return None

	def mark_recalled(self, message_id: str) -> bool:
		message = self.state.find(message_id)
		if message is None:
			return False
		message.is_recalled = True
		return True

	def apply_row_update(self, updated: Message) -> bool:
		"""Replace a held message's fields; unknown ids are ignored."""
		for idx, message in enumerate(self.state.messages):
			if message.id == updated.id:
				self.state.messages[idx] = updated
				return True
		return False

	async def load_older(self) -> int:
		"""Prepend the page before the oldest held message.

		Only one request runs at a time; a second trigger is a no-op. Returns
		the number of messages added.
		"""
		if self.loading_older or self.climbing or not self.state.has_older:
			return 0
		self.loading_older = True
		self.phase = SyncState.LOADING_OLDER
		generation = self.generation
		try:
			page = await self.store.fetch_messages(
				self.room_id,
				direction=BACKWARD,
				anchor=self.state.oldest_timestamp(),
				limit=self.page_size,
			)
		except StoreError as exc:
			logger.warning("older page fetch failed room=%s: %s", self.room_id, exc)
			obs_metrics.inc_pagination("older", "error")
			if generation == self.generation:
				self.loading_older = False
				self.phase = SyncState.LIVE
			return 0
		if not self._is_current(generation, "older"):
			return 0
		self.loading_older = False
		self.phase = SyncState.LIVE
		before = len(self.state.messages)
		self.state.messages = merge_messages(page, self.state.messages)
		if len(page) < self.page_size:
			self.state.has_older = False
		obs_metrics.inc_pagination("older", "ok")
		return len(self.state.messages) - before

	async def enter_climbing(self) -> bool:
		"""Drop the live tail and replay the room from its first message."""
		self.generation += 1
		self.climbing = True
		self.loading_older = False
		self.loading_newer = True
		self.state.messages = []
		self.state.has_older = False
		self.state.has_newer = True
		generation = self.generation
		try:
			page = await self.store.fetch_messages(self.room_id, direction=FORWARD, limit=self.page_size)
		except StoreError as exc:
			logger.warning("climb start failed room=%s: %s", self.room_id, exc)
			obs_metrics.inc_pagination("newer", "error")
			if generation == self.generation:
				self.loading_newer = False
			return False
		if not self._is_current(generation, "newer"):
			return False
		self.loading_newer = False
		self.state.messages = merge_messages([], page)
		self.state.has_newer = len(page) >= self.page_size
		obs_metrics.inc_pagination("newer", "ok")
		return True

	async def load_newer(self) -> int:
		if not self.climbing or self.loading_newer or not self.state.has_newer:
			return 0
		self.loading_newer = True
		generation = self.generation
		try:
			page = await self.store.fetch_messages(
				self.room_id,
				direction=FORWARD,
				anchor=self.state.newest_timestamp(),
				limit=self.page_size,
			)
		except StoreError as exc:
			logger.warning("newer page fetch failed room=%s: %s", self.room_id, exc)
			obs_metrics.inc_pagination("newer", "error")
			if generation == self.generation:
				self.loading_newer = False
			return 0
		if not self._is_current(generation, "newer"):
			return 0
		self.loading_newer = False
		before = len(self.state.messages)
		self.state.messages = merge_messages(self.state.messages, page)
		if len(page) < self.page_size:
			self.state.has_newer = False
		obs_metrics.inc_pagination("newer", "ok")
		return len(self.state.messages) - before

	async def exit_climbing(self) -> bool:
		"""Leave climbing mode with a fresh reload of the latest page."""
		unread, mentions = self.state.unread_count, self.state.mention_count
		online = self.state.online_users
		self.reset()
		self.state.unread_count, self.state.mention_count = unread, mentions
		self.state.online_users = online
		loaded = await self.initialize()
		self.mark_live()
		return loaded
