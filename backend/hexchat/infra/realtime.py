"""Per-room broadcast and presence channels.

Two transports share one ``Channel`` shape:

- ``LocalRealtime``: in-process hub, used by tests and single-process dev.
- ``RedisRealtime``: one pub/sub topic per room plus a TTL key per tracked
  presence; every track/untrack republishes the full presence snapshot.

Broadcasts are never delivered back to the channel that sent them. Presence
snapshots go to every subscriber of the room, the tracking channel included.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import ulid
from redis.exceptions import RedisError

from hexchat.domain.chat.events import EventKind
from hexchat.infra.redis import redis_client
from hexchat.settings import settings

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], Awaitable[None]]

PRESENCE_SYNC = EventKind.PRESENCE_SYNC.value


class RealtimeError(RuntimeError):
	"""Transport failure while talking to a room channel."""


class Channel(Protocol):
	name: str

	async def subscribe(self) -> None: ...

	async def track(self, presence: dict) -> None: ...

	async def send(self, kind: str, payload: dict) -> None: ...

	def on(self, kind: str, handler: EventHandler) -> None: ...

	async def unsubscribe(self) -> None: ...


class Realtime(Protocol):
	def channel(self, name: str) -> Channel: ...

	async def close(self) -> None: ...


class _BaseChannel:
	def __init__(self, name: str) -> None:
		self.name = name
		self.token = ulid.new().str
		self.subscribed = False
		self._handlers: Dict[str, List[EventHandler]] = {}

	def on(self, kind: str, handler: EventHandler) -> None:
		self._handlers.setdefault(kind, []).append(handler)

	async def _dispatch(self, kind: str, payload: dict) -> None:
		for handler in list(self._handlers.get(kind, ())):
			try:
				await handler(payload)
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.exception("room handler failed room=%s kind=%s", self.name, kind)


class LocalChannel(_BaseChannel):
	def __init__(self, hub: "LocalRealtime", name: str) -> None:
		super().__init__(name)
		self._hub = hub

	async def subscribe(self) -> None:
		if self.subscribed:
			return
		self.subscribed = True
		self._hub._join(self)

	async def track(self, presence: dict) -> None:
		if not self.subscribed:
			raise RealtimeError(f"channel {self.name} is not subscribed")
		self._hub._presence.setdefault(self.name, {})[self.token] = _wire(presence)
		await self._hub._sync_presence(self.name)

	async def send(self, kind: str, payload: dict) -> None:
		if not self.subscribed:
			raise RealtimeError(f"channel {self.name} is not subscribed")
		await self._hub._broadcast(self, kind, _wire(payload))

	async def unsubscribe(self) -> None:
		if not self.subscribed:
			return
		self.subscribed = False
		had_presence = self._hub._leave(self)
		if had_presence:
			await self._hub._sync_presence(self.name)


class LocalRealtime:
	def __init__(self) -> None:
		self._rooms: Dict[str, List[LocalChannel]] = {}
		self._presence: Dict[str, Dict[str, dict]] = {}

	def channel(self, name: str) -> LocalChannel:
		return LocalChannel(self, name)

	def subscribers(self, name: str) -> int:
		return len(self._rooms.get(name, ()))

	def _join(self, channel: LocalChannel) -> None:
		self._rooms.setdefault(channel.name, []).append(channel)

	def _leave(self, channel: LocalChannel) -> bool:
		members = self._rooms.get(channel.name, [])
		if channel in members:
			members.remove(channel)
		if not members:
			self._rooms.pop(channel.name, None)
		tracked = self._presence.get(channel.name, {})
		had_presence = tracked.pop(channel.token, None) is not None
		if not tracked:
			self._presence.pop(channel.name, None)
		return had_presence

	async def _broadcast(self, sender: LocalChannel, kind: str, payload: dict) -> None:
		for channel in list(self._rooms.get(sender.name, ())):
			if channel is sender:
				continue
			await channel._dispatch(kind, _wire(payload))

	async def _sync_presence(self, name: str) -> None:
		snapshot = {"presences": list(self._presence.get(name, {}).values())}
		for channel in list(self._rooms.get(name, ())):
			await channel._dispatch(PRESENCE_SYNC, _wire(snapshot))

	async def close(self) -> None:
		for members in list(self._rooms.values()):
			for channel in list(members):
				await channel.unsubscribe()


class RedisChannel(_BaseChannel):
	def __init__(self, realtime: "RedisRealtime", name: str) -> None:
		super().__init__(name)
		self._realtime = realtime
		self._pubsub = None
		self._listener: Optional[asyncio.Task] = None

	@property
	def topic(self) -> str:
		return f"room:{self.name}"

	@property
	def members_key(self) -> str:
		return f"presence:{self.name}"

	def presence_key(self, token: str) -> str:
		return f"presence:{self.name}:{token}"

	@property
	def _client(self):
		return self._realtime.client

	async def subscribe(self) -> None:
		if self.subscribed:
			return
		try:
			pubsub = self._client.pubsub()
			await pubsub.subscribe(self.topic)
		except (RedisError, OSError) as exc:
			raise RealtimeError(f"subscribe {self.name} failed: {exc}") from exc
		self._pubsub = pubsub
		self.subscribed = True
		self._listener = asyncio.create_task(self._listen(), name=f"room-listener:{self.name}")
		self._realtime._register(self)

	async def _listen(self) -> None:
		pubsub = self._pubsub
		try:
			while True:
				message = await pubsub.get_message(
					ignore_subscribe_messages=True,
					timeout=self._realtime.poll_timeout,
				)
				if message is None:
					continue
				await self._handle_raw(message.get("data"))
		except asyncio.CancelledError:
			raise
		except (RedisError, OSError):
			logger.warning("room listener stopped room=%s", self.name, exc_info=True)

	async def _handle_raw(self, data: Any) -> None:
		if isinstance(data, bytes):
			data = data.decode("utf-8", "replace")
		try:
			envelope = json.loads(data)
			kind = str(envelope["kind"])
			payload = envelope.get("payload") or {}
		except (TypeError, ValueError, KeyError):
			logger.warning("dropping malformed envelope room=%s", self.name)
			return
		if envelope.get("origin") == self.token and kind != PRESENCE_SYNC:
			return
		if not isinstance(payload, dict):
			logger.warning("dropping non-object payload room=%s kind=%s", self.name, kind)
			return
		await self._dispatch(kind, payload)

	async def _publish(self, kind: str, payload: dict) -> None:
		envelope = json.dumps({"origin": self.token, "kind": kind, "payload": payload})
		await self._client.publish(self.topic, envelope)

	async def _publish_snapshot(self) -> None:
		tokens = sorted(await self._client.smembers(self.members_key))
		presences: List[dict] = []
		if tokens:
			values = await self._client.mget([self.presence_key(token) for token in tokens])
			expired = [token for token, value in zip(tokens, values) if value is None]
			if expired:
				await self._client.srem(self.members_key, *expired)
			for value in values:
				if value is None:
					continue
				try:
					presences.append(json.loads(value))
				except ValueError:
					logger.warning("dropping unreadable presence room=%s", self.name)
		await self._publish(PRESENCE_SYNC, {"presences": presences})

	async def track(self, presence: dict) -> None:
		if not self.subscribed:
			raise RealtimeError(f"channel {self.name} is not subscribed")
		try:
			await self._client.set(self.presence_key(self.token), json.dumps(presence), ex=self._realtime.presence_ttl)
			await self._client.sadd(self.members_key, self.token)
			await self._publish_snapshot()
		except (RedisError, OSError) as exc:
			raise RealtimeError(f"track {self.name} failed: {exc}") from exc

	async def send(self, kind: str, payload: dict) -> None:
		if not self.subscribed:
			raise RealtimeError(f"channel {self.name} is not subscribed")
		try:
			await self._publish(kind, payload)
		except (RedisError, OSError) as exc:
			raise RealtimeError(f"send {kind} on {self.name} failed: {exc}") from exc

	async def unsubscribe(self) -> None:
		if not self.subscribed:
			return
		self.subscribed = False
		self._realtime._unregister(self)
		task = self._listener
		self._listener = None
		if task is not None:
			task.cancel()
			with suppress(asyncio.CancelledError):
				await task
		try:
			await self._client.delete(self.presence_key(self.token))
			await self._client.srem(self.members_key, self.token)
			await self._publish_snapshot()
		except (RedisError, OSError):
			logger.warning("presence cleanup failed room=%s", self.name, exc_info=True)
		pubsub = self._pubsub
		self._pubsub = None
		if pubsub is not None:
			try:
				await pubsub.unsubscribe(self.topic)
				await pubsub.aclose()
			except (RedisError, OSError):
				logger.debug("pubsub close failed room=%s", self.name, exc_info=True)


class RedisRealtime:
	def __init__(
		self,
		client=None,
		*,
		presence_ttl: Optional[int] = None,
		poll_timeout: float = 1.0,
	) -> None:
		self.client = client if client is not None else redis_client
		self.presence_ttl = presence_ttl or settings.presence_ttl_seconds
		self.poll_timeout = poll_timeout
		self._channels: List[RedisChannel] = []

	def channel(self, name: str) -> RedisChannel:
		return RedisChannel(self, name)

	def _register(self, channel: RedisChannel) -> None:
		self._channels.append(channel)

	def _unregister(self, channel: RedisChannel) -> None:
		if channel in self._channels:
			self._channels.remove(channel)

	async def close(self) -> None:
		for channel in list(self._channels):
			await channel.unsubscribe()


def _wire(payload: dict) -> dict:
	# Copy through JSON so peers never share mutable state with the sender
	return json.loads(json.dumps(payload))
