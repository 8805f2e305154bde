"""
Event consumer: drains the hand-off queue and applies business logic.

`process_event` is the placeholder handler; pass another coroutine function
to EventConsumer to plug in real processing. Handlers must tolerate duplicate
delivery of a block's events after a restart.

When the consumer ends for any reason it closes the queue, which the indexer
loop sees as ConsumerDisconnected on its next push.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from core.handoff import HandoffQueue
from indexer_logging.logger_manager import setup_module_logger
from shared.conversions import felt_to_string
from shared.types import DecodedEvent

_logger = setup_module_logger("event_consumer", "event_consumer.log", module_folder="Consumer_Logs")

EventHandler = Callable[[DecodedEvent], Awaitable[None]]


async def process_event(event: DecodedEvent) -> None:
    """Default handler: log the event. Replace with real processing."""
    selector = event.keys[0] if event.keys else "-"
    _logger.info(
        "Received event: block=%d from=%s tx=%s selector=%s data=%s",
        event.block_number,
        event.from_address,
        event.transaction_hash,
        selector,
        [felt_to_string(word) for word in event.data],
    )


class EventConsumer:
    def __init__(self, queue: HandoffQueue[DecodedEvent], handler: EventHandler = process_event) -> None:
        self._queue = queue
        self._handler = handler
        self.processed = 0

    async def run(self) -> int:
        """Process events in order until the producer finishes. Returns the count."""
        _logger.info("Event consumer started")
        try:
            async for event in self._queue:
                await self._handler(event)
                self.processed += 1
        finally:
            self._queue.close()
            _logger.info("Event consumer stopped after %d events", self.processed)
        return self.processed
