"""
Shared pytest configuration and fixtures for the Kanshi indexer tests.

Provides in-memory fakes for Redis, the asyncpg pool, the stream session and
the checkpoint store, so no test needs a network service.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections import deque
from typing import Any

# Keep test logs out of the project tree (read at logger_manager import)
os.environ.setdefault("INDEXER_LOG_DIR", tempfile.mkdtemp(prefix="kanshi-test-logs-"))

import pytest  # noqa: E402

from shared.exceptions import PersistenceError  # noqa: E402
from shared.types import (  # noqa: E402
    Block,
    DataFinality,
    DataMessage,
    EventFilter,
    StreamEvent,
    SubscriptionConfig,
)
from storage.checkpoint import CheckpointStore  # noqa: E402

SAMPLE_CONTRACT = "0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7"
SAMPLE_TX = "0x0000000000000000000000000000000000000000000000000000000000000abc"


# ---------------------------------------------------------------------------
# Stream data helpers
# ---------------------------------------------------------------------------


def make_event(n: int, from_address: str = SAMPLE_CONTRACT) -> StreamEvent:
    return StreamEvent(
        from_address=from_address,
        keys=[f"0x{0x99:064x}"],
        data=[f"0x{n:064x}"],
        transaction_hash=f"0x{n + 0x1000:064x}",
    )


def make_block(number: int, event_ids: list[int] | None = None) -> Block:
    return Block(
        block_number=number,
        timestamp=1_700_000_000 + number,
        events=[make_event(n) for n in (event_ids or [])],
    )


def make_data(
    *blocks: Block, finality: DataFinality = DataFinality.ACCEPTED
) -> DataMessage:
    return DataMessage(finality=finality, batch=list(blocks))


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRedis:
    """Dict-backed stand-in for redis.asyncio.Redis."""

    def __init__(self) -> None:
        self.data: dict[str, str | bytes] = {}
        self.closed = False
        self.fail: BaseException | None = None

    def _check(self) -> None:
        if self.fail is not None:
            raise self.fail

    async def set(self, key: str, value: str) -> bool:
        self._check()
        self.data[key] = value
        return True

    async def get(self, key: str) -> bytes | None:
        self._check()
        value = self.data.get(key)
        # redis-py returns raw bytes without decode_responses
        return value.encode("utf-8") if isinstance(value, str) else value

    async def delete(self, key: str) -> int:
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True


class FakePgPool:
    """Minimal asyncpg pool emulating the key_value_store statements."""

    def __init__(self) -> None:
        self.rows: dict[str, str] = {}
        self.statements: list[str] = []
        self.closed = False

    async def execute(self, sql: str, *args: Any) -> str:
        normalized = " ".join(sql.split()).upper()
        self.statements.append(normalized)
        if normalized.startswith("CREATE TABLE"):
            return "CREATE TABLE"
        if normalized.startswith("INSERT"):
            key, payload = args
            json.loads(payload)  # jsonb cast rejects invalid JSON
            self.rows[key] = payload
            return "INSERT 0 1"
        if normalized.startswith("DELETE"):
            existed = self.rows.pop(args[0], None) is not None
            return f"DELETE {int(existed)}"
        raise AssertionError(f"unexpected SQL: {sql}")

    async def fetchval(self, sql: str, *args: Any) -> Any:
        normalized = " ".join(sql.split()).upper()
        self.statements.append(normalized)
        if normalized == "SELECT 1":
            return 1
        return self.rows.get(args[0])

    async def close(self) -> None:
        self.closed = True


class MemoryCheckpointStore(CheckpointStore):
    def __init__(self, value: int | None = None) -> None:
        self.value = value
        self.saves: list[int] = []
        self.fail_save = False
        self.fail_load = False

    async def load(self) -> int | None:
        if self.fail_load:
            raise PersistenceError("disk on fire")
        return self.value

    async def save(self, block_number: int) -> None:
        if self.fail_save:
            raise PersistenceError("disk full")
        self.saves.append(block_number)
        self.value = block_number

    def describe(self) -> str:
        return "memory"


class ScriptedSession:
    """Stream session replaying a fixed list of messages (or exceptions)."""

    def __init__(self, messages: list[Any]) -> None:
        self._messages = deque(messages)
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def next(self) -> Any:
        if not self._messages:
            return None
        item = self._messages.popleft()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


class SessionRecorder:
    """session_factory for IndexerService that records each subscription."""

    def __init__(self, *scripts: list[Any]) -> None:
        self._scripts = deque(scripts)
        self.subscriptions: list[SubscriptionConfig] = []
        self.sessions: list[ScriptedSession] = []

    def __call__(self, url: str, api_key: str, subscription: SubscriptionConfig) -> ScriptedSession:
        self.subscriptions.append(subscription)
        session = ScriptedSession(self._scripts.popleft() if self._scripts else [])
        self.sessions.append(session)
        return session


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_pool():
    return FakePgPool()


@pytest.fixture
def pool_factory(fake_pool):
    calls: list[dict[str, Any]] = []

    async def factory(**kwargs: Any) -> FakePgPool:
        calls.append(kwargs)
        return fake_pool

    factory.calls = calls
    return factory


@pytest.fixture
def checkpoint_store():
    return MemoryCheckpointStore()


@pytest.fixture
def subscription():
    return SubscriptionConfig(
        starting_block=0,
        finality=DataFinality.PENDING,
        event_filters=(EventFilter(from_address=SAMPLE_CONTRACT),),
    )
