"""
Shared data types for the Kanshi indexer.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class NetworkName(Enum):
    MAINNET = "mainnet"
    SEPOLIA = "sepolia"

    @classmethod
    def from_str(cls, value: str) -> NetworkName:
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid network name: {value}") from None


class DataFinality(Enum):
    PENDING = "DATA_STATUS_PENDING"  # not yet final, may be replaced
    ACCEPTED = "DATA_STATUS_ACCEPTED"  # accepted on L2

    @classmethod
    def from_str(cls, value: str) -> DataFinality:
        normalized = value.strip().upper()
        for member in cls:
            if normalized in (member.value, member.name):
                return member
        raise ValueError(f"Invalid finality: {value}")


class HeaderMode(Enum):
    WEAK = "weak"  # header only sent with blocks that have matching data
    FULL = "full"


class IndexerState(Enum):
    INITIALIZING = "initializing"
    STREAMING = "streaming"
    DRAINING = "draining"
    STOPPED = "stopped"
    FAILED = "failed"


class OverflowPolicy(Enum):
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventFilter:
    from_address: str  # normalized 0x felt


@dataclass(frozen=True)
class SubscriptionConfig:
    """Immutable stream configuration. Rebuild with with_starting_block()."""

    starting_block: int
    finality: DataFinality = DataFinality.PENDING
    header_mode: HeaderMode = HeaderMode.WEAK
    event_filters: tuple[EventFilter, ...] = ()
    batch_size: int = 32

    def with_starting_block(self, block_number: int) -> SubscriptionConfig:
        return replace(self, starting_block=block_number)


# ---------------------------------------------------------------------------
# Stream messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Cursor:
    order_key: int
    unique_key: str = ""


@dataclass(frozen=True)
class StreamEvent:
    from_address: str
    keys: list[str]
    data: list[str]
    transaction_hash: str


@dataclass(frozen=True)
class Block:
    block_number: int
    timestamp: int  # unix seconds
    events: list[StreamEvent] = field(default_factory=list)


@dataclass(frozen=True)
class DataMessage:
    finality: DataFinality
    batch: list[Block]
    cursor: Cursor | None = None
    end_cursor: Cursor | None = None


@dataclass(frozen=True)
class Heartbeat:
    pass


@dataclass(frozen=True)
class Invalidate:
    cursor: Cursor | None = None


StreamMessage = DataMessage | Heartbeat | Invalidate


# ---------------------------------------------------------------------------
# Pipeline payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DecodedEvent:
    block_number: int
    from_address: str
    timestamp: int
    transaction_hash: str
    data: list[str]
    keys: list[str] = field(default_factory=list)
    finality: DataFinality = DataFinality.ACCEPTED


@dataclass(frozen=True)
class BlockState:
    """Persisted checkpoint record."""

    last_processed_block: int


@dataclass
class IndexerStats:
    messages: int = 0
    blocks: int = 0
    events: int = 0
    heartbeats: int = 0
    checkpoint_failures: int = 0
    last_block: int | None = None
    last_heartbeat_at: float | None = None
