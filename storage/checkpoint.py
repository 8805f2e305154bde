"""
Checkpoint persistence for the indexer loop.

The checkpoint is a single JSON object, {"last_processed_block": N}, that is
overwritten after every processed block and read once when the loop starts.
A missing checkpoint is a normal None, never an error.

Two stores share the same contract:
    - FileCheckpointStore    : local JSON file, replaced atomically
    - StorageCheckpointStore : a key in the Redis/PostgreSQL object store
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from shared.constants import MAX_U64
from shared.exceptions import PersistenceError, StorageError
from shared.types import BlockState
from storage.object_store import ObjectStore


def _validate_block(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_U64:
        raise PersistenceError(f"Invalid checkpoint block number: {value!r}")
    return value


class CheckpointStore(ABC):
    """Single-value store for the last processed block."""

    @abstractmethod
    async def load(self) -> int | None:
        """Return the saved block number, or None if no checkpoint exists."""

    @abstractmethod
    async def save(self, block_number: int) -> None:
        """Overwrite the checkpoint. Raises PersistenceError."""

    @abstractmethod
    def describe(self) -> str:
        """Human-readable location, for logs."""


class FileCheckpointStore(CheckpointStore):
    """Checkpoint kept in a local JSON file."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def describe(self) -> str:
        return f"file:{self._path}"

    def _read(self) -> int | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as exc:
            raise PersistenceError(f"Corrupt checkpoint {self._path}: {exc}") from exc
        except OSError as exc:
            raise PersistenceError(f"Cannot read checkpoint {self._path}: {exc}") from exc
        try:
            state = BlockState(**json.loads(raw))
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Corrupt checkpoint {self._path}: {exc}") from exc
        return _validate_block(state.last_processed_block)

    def _write(self, block_number: int) -> None:
        payload = json.dumps({"last_processed_block": block_number})
        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=directory
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self._path)
            except BaseException:
                _remove_quietly(tmp_path)
                raise
        except OSError as exc:
            raise PersistenceError(f"Cannot write checkpoint {self._path}: {exc}") from exc

    async def load(self) -> int | None:
        return await asyncio.to_thread(self._read)

    async def save(self, block_number: int) -> None:
        _validate_block(block_number)
        await asyncio.to_thread(self._write, block_number)


def _remove_quietly(path: str) -> None:
    """Best-effort removal of a temporary file."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class StorageCheckpointStore(CheckpointStore):
    """Checkpoint kept under a key in the object store."""

    def __init__(self, object_store: ObjectStore, key: str) -> None:
        self._store = object_store
        self._key = key

    def describe(self) -> str:
        return f"{self._store.backend_name}:{self._key}"

    async def load(self) -> int | None:
        try:
            state = await self._store.retrieve(self._key, into=BlockState)
        except StorageError as exc:
            raise PersistenceError(f"Cannot read checkpoint {self._key}: {exc}") from exc
        if state is None:
            return None
        return _validate_block(state.last_processed_block)

    async def save(self, block_number: int) -> None:
        _validate_block(block_number)
        try:
            await self._store.store(self._key, BlockState(last_processed_block=block_number))
        except StorageError as exc:
            raise PersistenceError(f"Cannot write checkpoint {self._key}: {exc}") from exc
