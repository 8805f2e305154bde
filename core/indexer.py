"""
Checkpointed stream-consumption loop.

States:
    INITIALIZING -> STREAMING -> (DRAINING ->) STOPPED
                              -> FAILED

Each run():
    1. loads the checkpoint and resumes from max(checkpoint, default start)
    2. opens a StreamSession for the resulting SubscriptionConfig
    3. for every block of every data batch, pushes one DecodedEvent per event
       into the hand-off queue, then saves the block number as checkpoint

The checkpoint is written after a block's events are queued, not after the
consumer has processed them, so delivery is at-least-once: a crash between
the two replays at most one block.

Usage:
    indexer = IndexerService(checkpoint_store, subscription, stream_url, api_key)
    asyncio.create_task(indexer.run(queue))
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable

from data.stream_session import StreamSession
from indexer_logging.logger_manager import log_data_entry, log_data_output, setup_module_logger
from shared.exceptions import ConsumerDisconnected, InvalidationSignal, PersistenceError
from shared.types import (
    Block,
    DataFinality,
    DataMessage,
    DecodedEvent,
    Heartbeat,
    IndexerState,
    IndexerStats,
    Invalidate,
    SubscriptionConfig,
)

if TYPE_CHECKING:
    from core.handoff import HandoffQueue
    from storage.checkpoint import CheckpointStore

SessionFactory = Callable[[str, str, SubscriptionConfig], StreamSession]


def resolve_starting_block(checkpoint: int | None, configured_default: int) -> int:
    """Resume point: the saved checkpoint, never below the configured default."""
    if checkpoint is None:
        return configured_default
    return max(checkpoint, configured_default)


class IndexerService:
    """Producer side of the pipeline. One instance, run() may be called again after failure."""

    def __init__(
        self,
        checkpoint_store: CheckpointStore,
        subscription: SubscriptionConfig,
        stream_url: str,
        api_key: str,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self._checkpoint_store = checkpoint_store
        self._base_subscription = subscription
        self._stream_url = stream_url
        self._api_key = api_key
        self._session_factory = session_factory or StreamSession

        self._state = IndexerState.STOPPED
        self._active_subscription: SubscriptionConfig | None = None
        self._last_saved_block: int | None = None
        self._reached_pending = False
        self._stop_requested = False
        self.stats = IndexerStats()

        self._logger = setup_module_logger("indexer", "indexer.log", module_folder="Indexer_Logs")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> IndexerState:
        return self._state

    @property
    def reached_pending(self) -> bool:
        return self._reached_pending

    @property
    def active_subscription(self) -> SubscriptionConfig | None:
        """Subscription used by the current (or last) session."""
        return self._active_subscription

    @property
    def last_saved_block(self) -> int | None:
        return self._last_saved_block

    def _set_state(self, state: IndexerState) -> None:
        if state is not self._state:
            self._logger.info("State %s -> %s", self._state.value, state.value)
        self._state = state

    def stop(self) -> None:
        """Request a cooperative stop after the message at hand."""
        self._stop_requested = True
        if self._state is IndexerState.STREAMING:
            self._set_state(IndexerState.DRAINING)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def initialize(self) -> StreamSession:
        """Resolve the resume point and open a connected session."""
        try:
            checkpoint = await self._checkpoint_store.load()
        except PersistenceError as exc:
            self._logger.warning("Failed to load checkpoint, using default start: %s", exc)
            checkpoint = None

        configured = self._base_subscription.starting_block
        starting_block = resolve_starting_block(checkpoint, configured)
        if checkpoint is not None:
            self._logger.info(
                "Loaded last processed block %d from %s",
                checkpoint,
                self._checkpoint_store.describe(),
            )
        else:
            self._logger.info("Starting from initial block %d", configured)

        self._last_saved_block = checkpoint
        self._active_subscription = self._base_subscription.with_starting_block(starting_block)
        session = self._session_factory(self._stream_url, self._api_key, self._active_subscription)
        await session.connect()
        return session

    async def run(self, queue: HandoffQueue[DecodedEvent]) -> IndexerState:
        """
        Run one loop invocation until the stream ends, the consumer goes away
        or stop() is requested (returns STOPPED), or a fatal error occurs
        (state FAILED, the error propagates).
        """
        self._set_state(IndexerState.INITIALIZING)
        try:
            session = await self.initialize()
        except BaseException:
            self._set_state(IndexerState.FAILED)
            raise

        try:
            self._set_state(IndexerState.STREAMING)
            while not self._stop_requested:
                message = await session.next()
                if message is None:
                    break
                self.stats.messages += 1

                if isinstance(message, DataMessage):
                    if not await self._handle_data(message, queue):
                        break
                elif isinstance(message, Heartbeat):
                    self.stats.heartbeats += 1
                    self.stats.last_heartbeat_at = time.monotonic()
                    self._logger.debug("Heartbeat received")
                elif isinstance(message, Invalidate):
                    raise InvalidationSignal(message.cursor)
        except asyncio.CancelledError:
            self._set_state(IndexerState.STOPPED)
            raise
        except Exception as exc:
            self._set_state(IndexerState.FAILED)
            self._logger.error("Indexer failed: %s", exc)
            raise
        finally:
            await session.close()

        self._set_state(IndexerState.STOPPED)
        return self._state

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    async def _handle_data(self, message: DataMessage, queue: HandoffQueue[DecodedEvent]) -> bool:
        """Queue and checkpoint every block. Returns False if the consumer is gone."""
        if message.finality is DataFinality.PENDING and not self._reached_pending:
            self._logger.info("Reached pending block!")
            self._reached_pending = True

        if message.batch:
            log_data_entry(
                trace_id=f"batch:{message.batch[0].block_number}-{message.batch[-1].block_number}",
                source_module="indexer",
                what="data batch received",
                data_type="DataMessage",
                data={
                    "finality": message.finality.value,
                    "blocks": [block.block_number for block in message.batch],
                    "events": sum(len(block.events) for block in message.batch),
                },
            )

        for block in message.batch:
            for index, decoded in enumerate(self._decode_block(block, message.finality)):
                try:
                    await queue.put(decoded)
                except ConsumerDisconnected:
                    self._logger.warning("Receiver dropped, stopping indexer...")
                    return False
                self.stats.events += 1
                log_data_output(
                    trace_id=f"{block.block_number}:{decoded.transaction_hash}:{index}",
                    source_module="indexer",
                    what="decoded event queued",
                    data_type="DecodedEvent",
                    data=decoded,
                    next_stage="event_consumer",
                )

            self.stats.blocks += 1
            self.stats.last_block = block.block_number
            await self._commit(block.block_number)
        return True

    @staticmethod
    def _decode_block(block: Block, finality: DataFinality) -> list[DecodedEvent]:
        return [
            DecodedEvent(
                block_number=block.block_number,
                from_address=event.from_address,
                timestamp=block.timestamp,
                transaction_hash=event.transaction_hash,
                data=list(event.data),
                keys=list(event.keys),
                finality=finality,
            )
            for event in block.events
        ]

    async def _commit(self, block_number: int) -> None:
        """Persist the checkpoint; failures are logged, never raised."""
        if self._last_saved_block is not None and block_number < self._last_saved_block:
            self._logger.warning(
                "Not saving checkpoint %d below last saved %d",
                block_number,
                self._last_saved_block,
            )
            return
        try:
            await self._checkpoint_store.save(block_number)
        except PersistenceError as exc:
            self.stats.checkpoint_failures += 1
            self._logger.warning("Failed to save block state: %s", exc)
            return
        self._last_saved_block = block_number
