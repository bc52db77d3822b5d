import itertools

import pytest

from hexchat.domain.chat.store import RoomStore, StoreError
from hexchat.domain.geo.fuzz import PrivacyFuzzer
from hexchat.domain.rooms.policy import ChatPolicyError
from hexchat.domain.session import ChatSession, Identity, NoticeCode
from hexchat.domain.suggestions import SUGGESTION_CHANNEL, Suggestion, SuggestionBoard, SuggestionStore
from hexchat.domain.suggestions.board import SUGGESTION_EVENT
from hexchat.infra.prefs import PrefsStore


def _clock(start=1_000_000, step=1):
    counter = itertools.count(start, step)
    return lambda: next(counter)


def _suggestion(idx, ts=None):
    return Suggestion(
        id=f"s{idx}",
        user_id=f"u{idx}",
        user_name=f"user {idx}",
        content=f"idea {idx}",
        timestamp=ts if ts is not None else 1000 + idx,
    )


class BrokenSuggestionStore(SuggestionStore):
    async def insert(self, suggestion):
        raise StoreError("suggestion_insert", OSError("connection reset"))

    async def latest(self, limit):
        raise StoreError("suggestion_fetch", OSError("connection reset"))


@pytest.mark.asyncio
async def test_open_loads_latest_newest_first_and_capped(realtime):
    store = SuggestionStore()
    for idx in range(60):
        await store.insert(_suggestion(idx))
    board = SuggestionBoard(store=store, realtime=realtime)
    assert await board.open() is True
    try:
        assert len(board.suggestions) == 50
        assert board.suggestions[0].id == "s59"
        assert board.suggestions[-1].id == "s10"
        assert realtime.subscribers(SUGGESTION_CHANNEL) == 1
    finally:
        await board.close()
    assert realtime.subscribers(SUGGESTION_CHANNEL) == 0
    assert board.suggestions == []


def test_accept_prepends_dedups_and_caps():
    board = SuggestionBoard(store=SuggestionStore(), realtime=None, limit=3)
    for idx in range(4):
        assert board.accept(_suggestion(idx)) is True
    assert board.accept(_suggestion(2)) is False
    assert [s.id for s in board.suggestions] == ["s3", "s2", "s1"]


@pytest.mark.asyncio
async def test_submission_reaches_other_boards_once(realtime):
    mine = SuggestionBoard(store=SuggestionStore(), realtime=realtime, clock=_clock())
    theirs = SuggestionBoard(store=SuggestionStore(), realtime=realtime, clock=_clock())
    await mine.open()
    await theirs.open()
    try:
        sent = await mine.submit("u1", "alice", "   more hexes please  ")
        assert sent.content == "more hexes please"
        assert [s.id for s in mine.suggestions] == [sent.id]
        assert [s.id for s in theirs.suggestions] == [sent.id]
        assert theirs.suggestions[0].user_name == "alice"
        assert theirs.suggestions[0].timestamp == sent.timestamp
        assert [s.id for s in await SuggestionStore().latest(50)] == [sent.id]
    finally:
        await mine.close()
        await theirs.close()


@pytest.mark.asyncio
async def test_invalid_broadcasts_are_dropped(realtime):
    board = SuggestionBoard(store=SuggestionStore(), realtime=realtime)
    sender = realtime.channel(SUGGESTION_CHANNEL)
    await sender.subscribe()
    await board.open()
    try:
        await sender.send(SUGGESTION_EVENT, {"id": "x", "content": "no author", "timestamp": 5})
        await sender.send(
            SUGGESTION_EVENT,
            {"id": "s9", "userId": "u9", "userName": "web", "content": "hi", "timestamp": "2024-05-01T12:00:00+00:00"},
        )
        assert [s.id for s in board.suggestions] == ["s9"]
        assert board.suggestions[0].timestamp == 1714564800000
    finally:
        await sender.unsubscribe()
        await board.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("content, code", [("   ", "suggestion_empty"), ("x" * 501, "suggestion_too_long")])
async def test_submit_rejects_empty_and_oversized(realtime, content, code):
    board = SuggestionBoard(store=SuggestionStore(), realtime=realtime)
    with pytest.raises(ChatPolicyError) as exc:
        await board.submit("u1", "alice", content)
    assert exc.value.code == code
    assert await SuggestionStore().latest(50) == []


@pytest.mark.asyncio
async def test_cooldown_is_remembered_in_prefs(realtime, tmp_path):
    prefs = PrefsStore(tmp_path / "prefs.json")
    now = [1_000_000]
    board = SuggestionBoard(store=SuggestionStore(), realtime=realtime, prefs=prefs, clock=lambda: now[0], cooldown_seconds=60)
    await board.submit("u1", "alice", "first")
    assert prefs.load().last_suggestion_submit_time == 1_000_000

    # A fresh board (after a restart) still honours the cooldown
    restarted = SuggestionBoard(store=SuggestionStore(), realtime=realtime, prefs=prefs, clock=lambda: now[0], cooldown_seconds=60)
    now[0] += 30_000
    assert restarted.cooldown_remaining() == pytest.approx(30.0)
    with pytest.raises(ChatPolicyError) as exc:
        await restarted.submit("u1", "alice", "second")
    assert exc.value.code == "suggestion_rate_limited"

    now[0] += 30_000
    await restarted.submit("u1", "alice", "second")
    assert [s.content for s in await SuggestionStore().latest(50)] == ["second", "first"]


@pytest.mark.asyncio
async def test_fetch_failure_keeps_board_live(realtime):
    board = SuggestionBoard(store=BrokenSuggestionStore(), realtime=realtime)
    assert await board.open() is True
    try:
        assert board.suggestions == []
        assert board.is_open is True
    finally:
        await board.close()


async def _no_country(coord):
    return None


def _session(realtime, user_id, *, suggestion_store=None):
    return ChatSession(
        store=RoomStore(),
        realtime=realtime,
        identity=Identity(user_id=user_id, user_name=user_id, avatar_seed=f"seed-{user_id}"),
        fuzzer=PrivacyFuzzer(offset_deg=0.0, marker_offset_deg=0.0),
        clock=_clock(),
        presence_tick_seconds=0,
        country_lookup=_no_country,
        suggestion_store=suggestion_store,
    )


@pytest.mark.asyncio
async def test_session_board_round_trip(realtime):
    alice = _session(realtime, "alice")
    bob = _session(realtime, "bob")
    try:
        assert await alice.open_suggestions() == []
        assert await bob.open_suggestions() == []
        sent = await alice.submit_suggestion("dark mode for the map")
        assert sent.user_name == "alice"
        assert [s.id for s in bob.suggestion_board.suggestions] == [sent.id]
        assert [s.id for s in await alice.open_suggestions()] == [sent.id]
        with pytest.raises(ChatPolicyError):
            await alice.submit_suggestion("and a second one right away")
    finally:
        await alice.close()
        await bob.close()
    assert realtime.subscribers(SUGGESTION_CHANNEL) == 0


@pytest.mark.asyncio
async def test_session_store_failure_becomes_notice(realtime):
    session = _session(realtime, "carol", suggestion_store=BrokenSuggestionStore())
    try:
        assert await session.submit_suggestion("anything") is None
        assert session.notices.codes() == [NoticeCode.SUGGESTION_FAILED]
        assert session.suggestion_board.suggestions == []
    finally:
        await session.close()
