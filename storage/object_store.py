"""
Typed object store.

Stores JSON-serializable values under string keys on either Redis or
PostgreSQL. The backend is chosen once, from the URL scheme, when the store
is constructed:

    postgres://... / postgresql://...  -> PostgresStorage
    anything else                      -> RedisStorage

Usage:
    store = ObjectStore("redis://127.0.0.1:6379")
    await store.store("kanshi:indexer_state", BlockState(100))
    state = await store.retrieve("kanshi:indexer_state", into=BlockState)
"""

from __future__ import annotations

import dataclasses
import json
from typing import Any, Callable
from urllib.parse import urlsplit

from config.loader import get_config
from indexer_logging.logger_manager import setup_module_logger
from shared.constants import POSTGRES_SCHEMES
from shared.exceptions import DecodingError, EncodingError
from shared.serialization_utils import dumps
from storage.backends import DataStorage, PostgresStorage, RedisStorage

_logger = setup_module_logger("object_store", "object_store.log", module_folder="Storage_Logs")


def is_postgres_url(url: str) -> bool:
    return urlsplit(url).scheme.lower() in POSTGRES_SCHEMES


def select_backend(url: str) -> DataStorage:
    """Build the backend matching the URL scheme."""
    if is_postgres_url(url):
        storage_cfg = get_config().get_storage_config()
        return PostgresStorage(
            url,
            min_size=storage_cfg.get("postgres_pool_min_size", 1),
            max_size=storage_cfg.get("postgres_pool_max_size", 4),
            command_timeout=storage_cfg.get("command_timeout_seconds", 10),
        )
    return RedisStorage(url)


def _build(into: Callable[..., Any], payload: Any) -> Any:
    if dataclasses.is_dataclass(into) and isinstance(into, type):
        if not isinstance(payload, dict):
            raise TypeError(f"expected an object for {into.__name__}, got {type(payload).__name__}")
        return into(**payload)
    return into(payload)


class ObjectStore:
    """Key -> JSON value store over a backend fixed at construction."""

    def __init__(self, url: str, backend: DataStorage | None = None) -> None:
        self._url = url
        self._backend = backend if backend is not None else select_backend(url)
        _logger.info("Object store using %s backend", self._backend.name)

    @property
    def backend_name(self) -> str:
        return self._backend.name

    async def store(self, key: str, value: Any) -> None:
        """Upsert `value` under `key`. Raises EncodingError, StorageConnectionError."""
        try:
            payload = dumps(value)
        except (TypeError, ValueError) as exc:
            raise EncodingError(f"Cannot serialize value for {key!r}: {exc}") from exc
        await self._backend.store_json(key, payload)

    async def retrieve(self, key: str, into: Callable[..., Any] | None = None) -> Any | None:
        """
        Return the value stored under `key`, or None if absent.

        When `into` is given (a dataclass or any callable) the decoded JSON is
        converted with it. Raises DecodingError if the payload does not parse
        or does not fit the requested shape.
        """
        payload = await self._backend.retrieve_json(key)
        if payload is None:
            return None
        try:
            value = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise DecodingError(f"Stored payload for {key!r} is not valid JSON: {exc}") from exc
        if into is None:
            return value
        try:
            return _build(into, value)
        except (TypeError, ValueError, KeyError) as exc:
            raise DecodingError(f"Stored payload for {key!r} does not fit {into!r}: {exc}") from exc

    async def delete(self, key: str) -> bool:
        """Delete `key`. Returns True only if it existed."""
        return await self._backend.delete(key)

    async def check_connection(self) -> None:
        await self._backend.check_connection()

    async def close(self) -> None:
        await self._backend.close()
