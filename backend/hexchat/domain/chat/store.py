"""Room store: append-only message log per room.

Backed by Postgres through asyncpg; falls back to an in-process store when no
pool can be obtained (tests, offline dev).
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import asyncpg

from hexchat.domain.chat.models import Message, ReplyRef
from hexchat.infra import postgres
from hexchat.settings import settings

logger = logging.getLogger(__name__)

BACKWARD = "backward"
FORWARD = "forward"

UPDATABLE_FIELDS = ("is_recalled", "user_name", "content")

# Columns added after the first schema; a store missing them needs a migration
_OPTIONAL_COLUMNS = ("is_recalled", "is_gm", "reply_to", "voice_duration", "country_code")
_MISSING_MARKERS = ("does not exist", "could not find", "schema cache")


class StoreError(RuntimeError):
	"""A room store operation failed."""

	def __init__(self, op: str, cause: BaseException) -> None:
		super().__init__(f"{op} failed: {cause}")
		self.op = op
		self.schema_mismatch = is_schema_mismatch(cause)


def is_schema_mismatch(exc: BaseException) -> bool:
	if isinstance(exc, asyncpg.exceptions.UndefinedColumnError):
		return True
	text = str(exc).lower()
	return any(column in text for column in _OPTIONAL_COLUMNS) and any(marker in text for marker in _MISSING_MARKERS)


def _to_datetime(ms: int) -> datetime:
	return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _to_ms(value: Any) -> int:
	if isinstance(value, datetime):
		if value.tzinfo is None:
			value = value.replace(tzinfo=timezone.utc)
		return int(value.timestamp() * 1000)
	return int(value)


def _parse_reply(raw: Any) -> Optional[ReplyRef]:
	if not raw:
		return None
	if isinstance(raw, str):
		try:
			raw = json.loads(raw)
		except ValueError:
			return None
	if not isinstance(raw, dict):
		return None
	return ReplyRef(user_name=str(raw.get("user_name") or raw.get("userName") or ""), content=str(raw.get("content") or ""))


def _row_to_message(row: asyncpg.Record) -> Message:
	user_id = str(row["user_id"])
	return Message(
		id=str(row["id"]),
		user_id=user_id,
		user_name=row["user_name"] or f"NODE_{user_id[:4]}",
		avatar_seed=row["user_avatar_seed"] or "",
		content=row["content"],
		timestamp=_to_ms(row["timestamp"]),
		type=row["type"],
		country_code=row.get("country_code"),
		is_recalled=bool(row.get("is_recalled") or False),
		is_gm=bool(row.get("is_gm") or False),
		reply_to=_parse_reply(row.get("reply_to")),
		voice_duration=row.get("voice_duration"),
	)


class _MessageStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.messages: Dict[str, List[Message]] = {}
		self.rooms_by_id: Dict[str, str] = {}

	async def insert(self, room_id: str, message: Message) -> None:
		async with self._lock:
			if message.id in self.rooms_by_id:
				return
			self.messages.setdefault(room_id, []).append(message.copy())
			self.rooms_by_id[message.id] = room_id

	async def list_messages(self, room_id: str) -> List[Message]:
		async with self._lock:
			return [message.copy() for message in self.messages.get(room_id, [])]

	async def update(self, message_id: str, fields: Dict[str, Any]) -> bool:
		async with self._lock:
			room_id = self.rooms_by_id.get(message_id)
			if room_id is None:
				return False
			rows = self.messages[room_id]
			for idx, message in enumerate(rows):
				if message.id == message_id:
					rows[idx] = message.copy(**fields)
					return True
			return False

	async def delete(self, message_id: str) -> bool:
		async with self._lock:
			room_id = self.rooms_by_id.pop(message_id, None)
			if room_id is None:
				return False
			self.messages[room_id] = [m for m in self.messages[room_id] if m.id != message_id]
			return True


_STORE = _MessageStore()


class RoomStore:
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
				logger.warning("postgres unavailable, keeping room history in memory: %s", exc)
				pool = None
		self._pool_instance = pool
		return pool

	async def insert_message(self, room_id: str, message: Message) -> None:
		pool = await self._get_pool()
		if pool is None:
			await _STORE.insert(room_id, message)
			return
		reply = json.dumps(message.reply_to.to_dict()) if message.reply_to else None
		try:
			async with pool.acquire() as conn:
				await conn.execute(
					"""
					INSERT INTO messages (
						id, room_id, user_id, user_name, user_avatar_seed, content, timestamp, type,
						country_code, is_recalled, is_gm, reply_to, voice_duration
					)
					VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12::jsonb,$13)
					ON CONFLICT (id) DO NOTHING
					""",
					message.id,
					room_id,
					message.user_id,
					message.user_name,
					message.avatar_seed,
					message.content,
					_to_datetime(message.timestamp),
					message.type,
					message.country_code,
					message.is_recalled,
					message.is_gm,
					reply,
					message.voice_duration,
				)
		except (OSError, asyncpg.PostgresError) as exc:
			raise StoreError("insert", exc) from exc

	async def fetch_messages(
		self,
		room_id: str,
		*,
		direction: str = BACKWARD,
		anchor: Optional[int] = None,
		limit: int,
	) -> List[Message]:
		"""Return up to ``limit`` messages in ascending order.

		``backward`` pages end strictly before ``anchor`` (latest page when None);
		``forward`` pages start strictly after it (oldest page when None).
		"""
		pool = await self._get_pool()
		if pool is None:
			return await self._fetch_messages_memory(room_id, direction=direction, anchor=anchor, limit=limit)
		try:
			async with pool.acquire() as conn:
				if direction == FORWARD:
					if anchor is None:
						rows = await conn.fetch(
							"SELECT * FROM messages WHERE room_id=$1 ORDER BY timestamp ASC LIMIT $2",
							room_id,
							limit,
						)
					else:
						rows = await conn.fetch(
							"SELECT * FROM messages WHERE room_id=$1 AND timestamp>$2 ORDER BY timestamp ASC LIMIT $3",
							room_id,
							_to_datetime(anchor),
							limit,
						)
				else:
					if anchor is None:
						rows = await conn.fetch(
							"SELECT * FROM messages WHERE room_id=$1 ORDER BY timestamp DESC LIMIT $2",
							room_id,
							limit,
						)
					else:
						rows = await conn.fetch(
							"SELECT * FROM messages WHERE room_id=$1 AND timestamp<$2 ORDER BY timestamp DESC LIMIT $3",
							room_id,
							_to_datetime(anchor),
							limit,
						)
					rows = list(reversed(rows))
		except (OSError, asyncpg.PostgresError) as exc:
			raise StoreError("fetch", exc) from exc
		return [_row_to_message(row) for row in rows]

	async def _fetch_messages_memory(
		self,
		room_id: str,
		*,
		direction: str,
		anchor: Optional[int],
		limit: int,
	) -> List[Message]:
		messages = await _STORE.list_messages(room_id)
		if direction == FORWARD:
			filtered = [m for m in messages if anchor is None or m.timestamp > anchor]
			filtered = sorted(filtered, key=lambda m: m.timestamp)
			return filtered[:limit]
		filtered = [m for m in messages if anchor is None or m.timestamp < anchor]
		filtered = sorted(filtered, key=lambda m: m.timestamp, reverse=True)
		return list(reversed(filtered[:limit]))

	async def update_message(self, message_id: str, **fields: Any) -> None:
		unknown = set(fields) - set(UPDATABLE_FIELDS)
		if unknown:
			raise ValueError(f"fields not updatable: {sorted(unknown)}")
		if not fields:
			return
		pool = await self._get_pool()
		if pool is None:
			await _STORE.update(message_id, fields)
			return
		columns = list(fields)
		assignments = ", ".join(f"{column}=${idx}" for idx, column in enumerate(columns, start=2))
		try:
			async with pool.acquire() as conn:
				await conn.execute(
					f"UPDATE messages SET {assignments} WHERE id=$1",
					message_id,
					*[fields[column] for column in columns],
				)
		except (OSError, asyncpg.PostgresError) as exc:
			raise StoreError("update", exc) from exc

	async def delete_message(self, message_id: str) -> None:
		pool = await self._get_pool()
		if pool is None:
			await _STORE.delete(message_id)
			return
		try:
			async with pool.acquire() as conn:
				await conn.execute("DELETE FROM messages WHERE id=$1", message_id)
		except (OSError, asyncpg.PostgresError) as exc:
			raise StoreError("delete", exc) from exc


async def reset_message_store() -> None:
	"""Test helper to clear in-memory message store."""
	async with _STORE._lock:  # type: ignore[attr-defined]
		_STORE.messages.clear()
		_STORE.rooms_by_id.clear()
