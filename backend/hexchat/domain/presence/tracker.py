"""Room presence set and cumulative read marks."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from hexchat.domain.chat.models import Message, RoomState, UserPresence
from hexchat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class ReadStatusMap:
	"""Per-user high-water mark of observed ``last_read_timestamp`` values.

	Marks never move backwards, so a peer whose presence briefly reports an
	older value (reconnect, second device) keeps the receipts already shown.
	"""

	def __init__(self) -> None:
		self._marks: Dict[str, int] = {}

	def __len__(self) -> int:
		return len(self._marks)

	def __contains__(self, user_id: object) -> bool:
		return user_id in self._marks

	def observe(self, user_id: str, timestamp: Optional[int]) -> bool:
		if timestamp is None:
			return False
		current = self._marks.get(user_id)
		if current is not None and current >= timestamp:
			return False
		self._marks[user_id] = int(timestamp)
		return True

	def mark_for(self, user_id: str) -> Optional[int]:
		return self._marks.get(user_id)

	def read_count(self, message: Message, *, viewer_id: str) -> int:
		excluded = {viewer_id, message.user_id}
		return sum(
			1
			for user_id, mark in self._marks.items()
			if user_id not in excluded and mark >= message.timestamp
		)

	def reset(self) -> None:
		self._marks.clear()


class PresenceTracker:
	"""Rebuilds ``RoomState.online_users`` from full presence snapshots."""

	def __init__(self, state: RoomState) -> None:
		self.state = state
		self.read_marks = ReadStatusMap()

	def apply_sync(self, presences: Iterable[UserPresence]) -> Dict[str, UserPresence]:
		online: Dict[str, UserPresence] = {}
		for presence in presences:
			# Several tabs of one user collapse into the latest joined one
			previous = online.get(presence.user_id)
			if previous is None or presence.online_at >= previous.online_at:
				online[presence.user_id] = presence
			self.read_marks.observe(presence.user_id, presence.last_read_timestamp)
		self.state.online_users = online
		obs_metrics.inc_presence_sync(self.state.scale.value)
		logger.debug("presence sync room=%s online=%d", self.state.room_id, len(online))
		return online

	def typing_users(self, *, exclude: Optional[str] = None) -> List[UserPresence]:
		return [
			presence
			for user_id, presence in self.state.online_users.items()
			if presence.is_typing and user_id != exclude
		]

	def read_count(self, message: Message, *, viewer_id: str) -> int:
		return self.read_marks.read_count(message, viewer_id=viewer_id)

	def reset_read_marks(self) -> None:
		"""Start a fresh cumulative map seeded from the current snapshot."""
		self.read_marks.reset()
		for user_id, presence in self.state.online_users.items():
			self.read_marks.observe(user_id, presence.last_read_timestamp)

	def reset(self) -> None:
		self.state.online_users = {}
		self.read_marks.reset()
