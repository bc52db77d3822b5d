import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from hexchat.domain.chat import store as chat_store
from hexchat.domain.suggestions import store as suggestion_store
from hexchat.infra import postgres
from hexchat.infra.realtime import LocalRealtime
from hexchat.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
    try:
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    except Exception:
        # Non-fatal; proceed with default policy
        pass


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    from hexchat.infra.redis import redis_client, set_redis_client
    original = redis_client.client
    client = FakeRedis(decode_responses=True)
    set_redis_client(client)
    try:
        yield client
    finally:
        set_redis_client(original)
        await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
    async def _no_pool():
        raise OSError("postgres disabled in tests")

    async def _noop():
        return None

    monkeypatch.setattr(settings, "postgres_enabled", False)
    monkeypatch.setattr(postgres, "get_pool", _no_pool)
    monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def keep_test_log_handlers(monkeypatch):
    from hexchat import obs

    # Sessions call obs.init(); leave pytest's capture handlers in place
    monkeypatch.setattr(obs, "_initialised", True)


@pytest_asyncio.fixture(autouse=True)
async def clean_message_store():
    await chat_store.reset_message_store()
    await suggestion_store.reset_suggestion_store()
    yield
    await chat_store.reset_message_store()
    await suggestion_store.reset_suggestion_store()


@pytest.fixture
def realtime():
    return LocalRealtime()


@pytest.fixture
def room_store():
    return chat_store.RoomStore()


class StubS3:
    """Records put_object calls; ``fail`` makes the next calls raise like botocore does."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.puts = []

    def put_object(self, **kwargs):
        if self.fail:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")
        self.puts.append(kwargs)
        return {"ETag": "x"}


@pytest.fixture
def stub_s3():
    return StubS3()
