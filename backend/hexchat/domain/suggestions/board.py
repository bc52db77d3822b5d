"""Global suggestion board: latest entries plus live inserts from other clients."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

import ulid
from pydantic import ValidationError

from hexchat.domain.chat.models import now_ms
from hexchat.domain.chat.store import StoreError
from hexchat.domain.rooms.policy import ChatPolicyError
from hexchat.domain.suggestions.models import Suggestion, SuggestionPayload
from hexchat.domain.suggestions.store import SuggestionStore
from hexchat.infra.prefs import PrefsStore
from hexchat.infra.realtime import Channel, Realtime, RealtimeError
from hexchat.obs import metrics as obs_metrics
from hexchat.settings import settings

logger = logging.getLogger(__name__)

SUGGESTION_CHANNEL = "suggestions_board"
SUGGESTION_EVENT = "new-suggestion"


class SuggestionBoard:
	"""Newest-first list capped at ``limit``, deduplicated by id.

	Submissions are throttled per client; the last submit time lives in the
	client prefs so the cooldown survives a restart.
	"""

	def __init__(
		self,
		*,
		store: SuggestionStore,
		realtime: Realtime,
		prefs: Optional[PrefsStore] = None,
		clock: Callable[[], int] = now_ms,
		limit: Optional[int] = None,
		cooldown_seconds: Optional[float] = None,
	) -> None:
		self.store = store
		self.realtime = realtime
		self.prefs = prefs
		self.limit = settings.suggestion_limit if limit is None else limit
		self.cooldown_seconds = settings.suggestion_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
		self.suggestions: List[Suggestion] = []
		self._clock = clock
		self._channel: Optional[Channel] = None
		self._last_submit: Optional[int] = None

	@property
	def is_open(self) -> bool:
		return self._channel is not None

	async def open(self) -> bool:
		"""Subscribe to inserts, then load the latest page."""
		if self._channel is not None:
			return True
		channel = self.realtime.channel(SUGGESTION_CHANNEL)
		channel.on(SUGGESTION_EVENT, self._handler(channel))
		try:
			await channel.subscribe()
		except RealtimeError as exc:
			logger.warning("suggestion board subscribe failed: %s", exc)
			return False
		self._channel = channel
		try:
			latest = await self.store.latest(self.limit)
		except StoreError as exc:
			logger.warning("suggestion board fetch failed: %s", exc)
			return True
		if self._channel is not channel:
			obs_metrics.inc_stale_response("suggestions")
			return False
		# Inserts that arrived while the page was loading stay on top
		seen = {suggestion.id for suggestion in self.suggestions}
		self.suggestions.extend(row for row in latest if row.id not in seen)
		del self.suggestions[self.limit :]
		return True

	async def close(self) -> None:
		channel = self._channel
		self._channel = None
		self.suggestions = []
		if channel is not None:
			await channel.unsubscribe()

	def _handler(self, channel: Channel):
		async def handle(payload: dict) -> None:
			if channel is not self._channel:
				obs_metrics.inc_stale_response("suggestion_event")
				return
			try:
				suggestion = SuggestionPayload.model_validate(payload).to_model()
			except ValidationError as exc:
				logger.warning("dropping invalid suggestion errors=%d", exc.error_count())
				return
			self.accept(suggestion)

		return handle

	def accept(self, suggestion: Suggestion) -> bool:
		if any(existing.id == suggestion.id for existing in self.suggestions):
			return False
		self.suggestions.insert(0, suggestion)
		del self.suggestions[self.limit :]
		return True

	def _last_submit_time(self) -> Optional[int]:
		if self.prefs is not None:
			return self.prefs.load().last_suggestion_submit_time
		return self._last_submit

	def cooldown_remaining(self) -> float:
		last = self._last_submit_time()
		if last is None:
			return 0.0
		elapsed = (self._clock() - last) / 1000
		return max(0.0, self.cooldown_seconds - elapsed)

	async def submit(self, user_id: str, user_name: str, content: str) -> Suggestion:
		text = content.strip()
		if not text:
			raise ChatPolicyError("suggestion_empty")
		if len(text) > settings.suggestion_max_length:
			raise ChatPolicyError("suggestion_too_long")
		if self.cooldown_remaining() > 0:
			obs_metrics.inc_suggestion("rate_limited")
			raise ChatPolicyError("suggestion_rate_limited")

		now = self._clock()
		suggestion = Suggestion(id=ulid.new().str, user_id=user_id, user_name=user_name, content=text, timestamp=now)
		await self.store.insert(suggestion)
		self._last_submit = now
		if self.prefs is not None:
			self.prefs.update(last_suggestion_submit_time=now)
		self.accept(suggestion)
		obs_metrics.inc_suggestion("sent")

		channel = self._channel
		if channel is not None:
			try:
				await channel.send(SUGGESTION_EVENT, suggestion.to_dict())
			except RealtimeError as exc:
				logger.warning("suggestion broadcast failed id=%s: %s", suggestion.id, exc)
		return suggestion
