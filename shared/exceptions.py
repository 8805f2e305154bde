"""
Exception hierarchy for the Kanshi indexer.

Library errors (redis, asyncpg, websockets, json, OSError) are translated into
these types at module boundaries so callers only need to know this module.
"""

from __future__ import annotations

from typing import Any


class IndexerError(Exception):
    """Base class for all indexer errors."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(IndexerError, ValueError):
    """Missing or invalid required settings. Raised before the loop starts."""


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(IndexerError):
    """Base class for object store failures."""


class StorageConnectionError(StorageError, ConnectionError):
    """Transport failure talking to Redis or PostgreSQL."""


class EncodingError(StorageError):
    """A value could not be serialized to JSON."""


class DecodingError(StorageError):
    """A stored payload could not be parsed into the requested shape."""


class PersistenceError(IndexerError, OSError):
    """Checkpoint read/write failure (other than 'not found')."""


# ---------------------------------------------------------------------------
# Stream
# ---------------------------------------------------------------------------


class StreamError(IndexerError):
    """Base class for stream provider failures."""


class StreamConnectionError(StreamError, ConnectionError):
    """Bad credentials, network failure or abnormal transport close."""


class StreamSetupError(StreamError):
    """Malformed filter/configuration, or the provider rejected it."""


class StreamProtocolError(StreamError):
    """A message from the provider could not be decoded."""


class InvalidationSignal(StreamError):
    """The provider reported a chain reorganization."""

    def __init__(self, cursor: Any = None) -> None:
        self.cursor = cursor
        if cursor is not None:
            message = f"Received an invalidate request at block {cursor.order_key}"
        else:
            message = "Invalidate request without cursor provided"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Hand-off queue
# ---------------------------------------------------------------------------


class ConsumerDisconnected(IndexerError):
    """The receiving end of the hand-off queue is gone."""


class BackpressureTimeout(IndexerError):
    """A bounded hand-off queue stayed full longer than the put timeout."""
