"""
Key-value backends for the object store.

Two interchangeable implementations of DataStorage:
    - RedisStorage    : plain SET/GET/DEL on a Redis server (redis.asyncio)
    - PostgresStorage : single key/value table upserted by primary key (asyncpg)

Backends move JSON text; encoding and decoding live in storage.object_store.
Library exceptions are translated to StorageConnectionError / StorageError;
payloads a backend cannot hold or return as text raise EncodingError /
DecodingError.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator

import asyncpg
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.constants import KV_TABLE_NAME
from shared.exceptions import DecodingError, EncodingError, StorageConnectionError, StorageError

_CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {KV_TABLE_NAME} (
    key TEXT PRIMARY KEY,
    value JSONB NOT NULL
)
"""

_UPSERT_SQL = f"""
INSERT INTO {KV_TABLE_NAME} (key, value)
VALUES ($1, $2::jsonb)
ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
"""

_SELECT_SQL = f"SELECT value::text FROM {KV_TABLE_NAME} WHERE key = $1"

_DELETE_SQL = f"DELETE FROM {KV_TABLE_NAME} WHERE key = $1"


class DataStorage(ABC):
    """JSON-text key-value backend."""

    name: str = "abstract"

    @abstractmethod
    async def store_json(self, key: str, payload: str) -> None:
        """Upsert `payload` under `key`."""

    @abstractmethod
    async def retrieve_json(self, key: str) -> str | None:
        """Return the stored payload, or None if the key is absent."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove `key`. Returns whether it existed."""

    @abstractmethod
    async def check_connection(self) -> None:
        """Raise StorageConnectionError if the backend is unreachable."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections. Safe to call more than once."""


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisStorage(DataStorage):
    """Redis backend. `store_json` is a plain overwrite (SET)."""

    name = "redis"

    def __init__(self, url: str, client: Any | None = None) -> None:
        self._url = url
        # from_url does not connect; the first command does
        self._client = client if client is not None else redis.Redis.from_url(url)

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise StorageConnectionError(f"Redis {operation} failed: {exc}") from exc
        except RedisError as exc:
            raise StorageError(f"Redis {operation} failed: {exc}") from exc

    async def store_json(self, key: str, payload: str) -> None:
        with self._translate_errors("SET"):
            await self._client.set(key, payload)

    async def retrieve_json(self, key: str) -> str | None:
        with self._translate_errors("GET"):
            value = await self._client.get(key)
        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecodingError(f"Redis value for {key!r} is not UTF-8: {exc}") from exc
        return value

    async def delete(self, key: str) -> bool:
        with self._translate_errors("DEL"):
            removed = await self._client.delete(key)
        return int(removed) > 0

    async def check_connection(self) -> None:
        with self._translate_errors("PING"):
            pong = await self._client.ping()
        if not pong:
            raise StorageConnectionError("Redis PING returned an unexpected response")

    async def close(self) -> None:
        with self._translate_errors("close"):
            await self._client.aclose()


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------


PoolFactory = Callable[..., Awaitable[Any]]


class PostgresStorage(DataStorage):
    """
    PostgreSQL backend over an asyncpg pool.

    The pool and the key/value table are created lazily on first use.
    `store_json` is an atomic INSERT ... ON CONFLICT DO UPDATE.
    """

    name = "postgres"

    def __init__(
        self,
        dsn: str,
        pool_factory: PoolFactory | None = None,
        min_size: int = 1,
        max_size: int = 4,
        command_timeout: float = 10,
    ) -> None:
        self._dsn = dsn
        self._pool_factory = pool_factory or asyncpg.create_pool
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: Any | None = None
        self._pool_lock = asyncio.Lock()

    @contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (
            OSError,
            asyncio.TimeoutError,
            asyncpg.InterfaceError,
            asyncpg.exceptions.PostgresConnectionError,
        ) as exc:
            raise StorageConnectionError(f"PostgreSQL {operation} failed: {exc}") from exc
        except (
            asyncpg.exceptions.UntranslatableCharacterError,
            asyncpg.exceptions.CharacterNotInRepertoireError,
        ) as exc:
            # e.g. a \u0000 escape, which JSONB cannot hold
            raise EncodingError(f"PostgreSQL {operation} rejected the payload: {exc}") from exc
        except asyncpg.PostgresError as exc:
            raise StorageError(f"PostgreSQL {operation} failed: {exc}") from exc

    async def _require_pool(self) -> Any:
        if self._pool is not None:
            return self._pool
        async with self._pool_lock:
            if self._pool is None:
                with self._translate_errors("connect"):
                    pool = await self._pool_factory(
                        dsn=self._dsn,
                        min_size=self._min_size,
                        max_size=self._max_size,
                        command_timeout=self._command_timeout,
                    )
                try:
                    with self._translate_errors("schema setup"):
                        await pool.execute(_CREATE_TABLE_SQL)
                except StorageError:
                    await pool.close()
                    raise
                self._pool = pool
        return self._pool

    async def store_json(self, key: str, payload: str) -> None:
        pool = await self._require_pool()
        with self._translate_errors("upsert"):
            await pool.execute(_UPSERT_SQL, key, payload)

    async def retrieve_json(self, key: str) -> str | None:
        pool = await self._require_pool()
        with self._translate_errors("select"):
            return await pool.fetchval(_SELECT_SQL, key)

    async def delete(self, key: str) -> bool:
        pool = await self._require_pool()
        with self._translate_errors("delete"):
            status = await pool.execute(_DELETE_SQL, key)
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return int(str(status).split()[-1]) > 0

    async def check_connection(self) -> None:
        pool = await self._require_pool()
        with self._translate_errors("ping"):
            await pool.fetchval("SELECT 1")

    async def close(self) -> None:
        if self._pool is not None:
            pool, self._pool = self._pool, None
            with self._translate_errors("close"):
                await pool.close()
