import asyncio
import itertools
import random

import pytest

from hexchat.domain.chat.models import UserPresence
from hexchat.domain.chat.store import RoomStore
from hexchat.domain.geo.buckets import Coordinate, ScaleLevel
from hexchat.domain.geo.fuzz import PrivacyFuzzer
from hexchat.domain.session import ChatSession, Identity
from hexchat.domain.session.channel import RoomChannel
from hexchat.infra.realtime import LocalRealtime, RedisRealtime

ROOM = "district_keepalive"


def _factory(calls):
    def build(channel):
        calls.append(channel.room_id)
        return UserPresence(
            user_id="user-keepalive",
            user_name="keeper",
            avatar_seed="seed",
            lat=20.0 + len(calls) * 0.0001,
            lng=10.0,
            online_at=1,
        )

    return build


@pytest.mark.asyncio
async def test_keepalive_refreshes_presence_ttl(fake_redis):
    realtime = RedisRealtime(fake_redis, presence_ttl=1, poll_timeout=0.05)
    calls = []
    room = RoomChannel(
        ScaleLevel.DISTRICT,
        ROOM,
        realtime=realtime,
        store=RoomStore(),
        presence_factory=_factory(calls),
        tick_seconds=0.05,
    )
    assert await room.open() is True
    try:
        (token,) = await fake_redis.smembers(f"presence:{ROOM}")
        await asyncio.sleep(1.3)
        ttl = await fake_redis.ttl(f"presence:{ROOM}:{token}")
        assert ttl > 0
        # Marker is rebuilt on every tick
        assert len(calls) > 5
    finally:
        await room.close()
        await realtime.close()


@pytest.mark.asyncio
async def test_close_stops_refreshes_and_untracks(fake_redis):
    realtime = RedisRealtime(fake_redis, presence_ttl=1, poll_timeout=0.05)
    calls = []
    room = RoomChannel(
        ScaleLevel.DISTRICT,
        ROOM,
        realtime=realtime,
        store=RoomStore(),
        presence_factory=_factory(calls),
        tick_seconds=0.05,
    )
    await room.open()
    (token,) = await fake_redis.smembers(f"presence:{ROOM}")
    await room.close()
    ticks = len(calls)
    await asyncio.sleep(0.2)
    assert len(calls) == ticks
    assert await fake_redis.smembers(f"presence:{ROOM}") == set()
    assert await fake_redis.exists(f"presence:{ROOM}:{token}") == 0
    assert room.is_open is False
    await realtime.close()


class SlowFirstFetch(RoomStore):
    """Holds the first page fetch until the test releases it."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.calls = 0

    async def fetch_messages(self, room_id, **kwargs):
        self.calls += 1
        if self.calls == 1:
            await self.gate.wait()
        return await super().fetch_messages(room_id, **kwargs)


def _ticking_tasks():
    return [task for task in asyncio.all_tasks() if task.get_name().startswith("presence-tick:") and not task.done()]


@pytest.mark.asyncio
async def test_reopen_while_first_open_is_loading_keeps_single_keepalive():
    realtime = LocalRealtime()
    store = SlowFirstFetch()
    calls = []
    room = RoomChannel(
        ScaleLevel.DISTRICT,
        ROOM,
        realtime=realtime,
        store=store,
        presence_factory=_factory(calls),
        tick_seconds=0.05,
    )
    first = asyncio.create_task(room.open())
    while store.calls == 0:
        await asyncio.sleep(0)

    assert await room.reopen(reason="resume") is True
    store.gate.set()
    assert await first is False

    assert len(_ticking_tasks()) == 1
    assert realtime.subscribers(ROOM) == 1
    assert room.is_open is True

    await room.close()
    assert _ticking_tasks() == []
    assert realtime.subscribers(ROOM) == 0


def _ticking_session(realtime, user_id, *, marker_offset_deg, tick_seconds):
    clock = itertools.count(1000)

    async def country(coord):
        return "CN"

    return ChatSession(
        store=RoomStore(),
        realtime=realtime,
        identity=Identity(user_id=user_id, user_name=user_id, avatar_seed=f"seed-{user_id}"),
        fuzzer=PrivacyFuzzer(offset_deg=0.0, marker_offset_deg=marker_offset_deg, rng=random.Random(7)),
        clock=lambda: next(clock),
        presence_tick_seconds=tick_seconds,
        country_lookup=country,
    )


@pytest.mark.asyncio
async def test_marker_jitter_never_moves_session_anchor_or_rooms():
    anchor = Coordinate(39.9, 116.4)

    async def provide():
        return anchor

    realtime = LocalRealtime()
    alice = _ticking_session(realtime, "alice", marker_offset_deg=0.0025, tick_seconds=0.05)
    bob = _ticking_session(realtime, "bob", marker_offset_deg=0.0, tick_seconds=0)
    await alice.start(provide, zoom=14)
    await bob.start(provide)
    try:
        rooms = alice.rooms
        markers = []
        for _ in range(6):
            await asyncio.sleep(0.06)
            marker = bob.room_state(ScaleLevel.DISTRICT).online_users["alice"]
            markers.append((marker.lat, marker.lng))

        assert len(set(markers)) > 1
        for lat, lng in markers:
            assert abs(lat - anchor.lat) <= 0.0025 + 1e-9
            assert abs(lng - anchor.lng) <= 0.0025 + 1e-9
        assert alice.anchor == anchor
        assert alice.rooms == rooms
        for scale in ScaleLevel:
            assert alice.channel(scale).room_id == rooms.for_scale(scale)
    finally:
        await alice.close()
        await bob.close()
