"""Suggestion table access, newest first.

Shares the room store's pool and the same in-process fallback behaviour.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import asyncpg

from hexchat.domain.chat.store import StoreError
from hexchat.domain.suggestions.models import Suggestion, to_ms
from hexchat.infra import postgres
from hexchat.settings import settings

logger = logging.getLogger(__name__)


class _SuggestionStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.rows: Dict[str, Suggestion] = {}

	async def insert(self, suggestion: Suggestion) -> None:
		async with self._lock:
			self.rows.setdefault(suggestion.id, Suggestion(**suggestion.to_dict()))

	async def latest(self, limit: int) -> List[Suggestion]:
		async with self._lock:
			rows = sorted(self.rows.values(), key=lambda row: row.timestamp, reverse=True)
			return [Suggestion(**row.to_dict()) for row in rows[:limit]]


_STORE = _SuggestionStore()


def _row_to_suggestion(row: asyncpg.Record) -> Suggestion:
	return Suggestion(
		id=str(row["id"]),
		user_id=str(row["user_id"]),
		user_name=row["user_name"] or "",
		content=row["content"],
		timestamp=to_ms(row["timestamp"]),
	)


class SuggestionStore:
	def __init__(self, pool: Optional[asyncpg.Pool] = None) -> None:
		self._pool_checked = pool is not None
		self._pool_instance: Optional[asyncpg.Pool] = pool

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		pool: Optional[asyncpg.Pool] = None
		if settings.postgres_enabled:
			try:
				pool = await postgres.get_pool()
			except (OSError, asyncpg.PostgresError, AssertionError) as exc:
				logger.warning("postgres unavailable, keeping suggestions in memory: %s", exc)
				pool = None
		self._pool_instance = pool
		return pool

	async def insert(self, suggestion: Suggestion) -> None:
		pool = await self._get_pool()
		if pool is None:
			await _STORE.insert(suggestion)
			return
		try:
			async with pool.acquire() as conn:
				await conn.execute(
					"""
					INSERT INTO suggestions (id, user_id, user_name, content, timestamp)
					VALUES ($1,$2,$3,$4,$5)
					ON CONFLICT (id) DO NOTHING
					""",
					suggestion.id,
					suggestion.user_id,
					suggestion.user_name,
					suggestion.content,
					datetime.fromtimestamp(suggestion.timestamp / 1000, tz=timezone.utc),
				)
		except (OSError, asyncpg.PostgresError) as exc:
			raise StoreError("suggestion_insert", exc) from exc

	async def latest(self, limit: int) -> List[Suggestion]:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.latest(limit)
		try:
			async with pool.acquire() as conn:
				rows = await conn.fetch("SELECT * FROM suggestions ORDER BY timestamp DESC LIMIT $1", limit)
		except (OSError, asyncpg.PostgresError) as exc:
			raise StoreError("suggestion_fetch", exc) from exc
		return [_row_to_suggestion(row) for row in rows]


async def reset_suggestion_store() -> None:
	"""Test helper to clear in-memory suggestions."""
	async with _STORE._lock:  # type: ignore[attr-defined]
		_STORE.rows.clear()
