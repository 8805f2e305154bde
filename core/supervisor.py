"""
Top-level coordinator for the indexer and consumer tasks.

Runs both tasks, restarts the indexer loop after transient failures with
bounded exponential backoff, and maps the outcome to a process exit code:

    0: stream ended / shutdown requested / consumer finished cleanly
    1: fatal indexer failure (invalidation, setup error, restarts
       exhausted) or consumer failure

Each restart re-enters INITIALIZING, so it resumes from the last durable
checkpoint.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable

from core.consumer import EventConsumer
from core.handoff import HandoffQueue
from core.indexer import IndexerService
from indexer_logging.logger_manager import setup_module_logger
from shared.exceptions import BackpressureTimeout, StreamConnectionError, StreamProtocolError
from shared.types import DecodedEvent, IndexerState

RESTARTABLE_ERRORS = (StreamConnectionError, StreamProtocolError, BackpressureTimeout)


def compute_backoff(
    attempt: int, base_delay: float, max_delay: float, jitter_max: float
) -> float:
    """Exponential backoff with jitter, capped at max_delay."""
    return min(base_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter_max), max_delay)


class Supervisor:
    def __init__(
        self,
        indexer: IndexerService,
        consumer: EventConsumer,
        queue: HandoffQueue[DecodedEvent],
        max_restarts: int = 5,
        base_delay: float = 2,
        max_delay: float = 60,
        jitter_max: float = 1.0,
        drain_timeout: float = 10,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._indexer = indexer
        self._consumer = consumer
        self._queue = queue
        self._max_restarts = max_restarts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._jitter_max = jitter_max
        self._drain_timeout = drain_timeout
        self._sleep = sleep
        self._shutdown = asyncio.Event()
        self.restarts = 0

        self._logger = setup_module_logger(
            "supervisor", "supervisor.log", module_folder="Supervisor_Logs"
        )

    def request_shutdown(self) -> None:
        self._shutdown.set()

    # ------------------------------------------------------------------
    # Indexer restart policy
    # ------------------------------------------------------------------

    async def _run_indexer(self) -> IndexerState:
        failures = 0
        try:
            while True:
                blocks_before = self._indexer.stats.blocks
                try:
                    return await self._indexer.run(self._queue)
                except RESTARTABLE_ERRORS as exc:
                    if self._shutdown.is_set():
                        raise
                    if self._indexer.stats.blocks > blocks_before:
                        failures = 0
                    failures += 1
                    if failures > self._max_restarts:
                        self._logger.critical(
                            "Indexer failed %d times in a row, giving up: %s", failures, exc
                        )
                        raise
                    delay = compute_backoff(
                        failures, self._base_delay, self._max_delay, self._jitter_max
                    )
                    self.restarts += 1
                    self._logger.warning(
                        "Indexer failed (%d/%d): %s. Restarting in %.1fs",
                        failures,
                        self._max_restarts,
                        exc,
                        delay,
                    )
                    await self._sleep(delay)
        finally:
            self._queue.finish()

    # ------------------------------------------------------------------
    # Task coordination
    # ------------------------------------------------------------------

    async def run(self) -> int:
        indexer_task = asyncio.create_task(self._run_indexer(), name="indexer")
        consumer_task = asyncio.create_task(self._consumer.run(), name="event_consumer")
        shutdown_task = asyncio.create_task(self._shutdown.wait(), name="shutdown")
        tasks = [indexer_task, consumer_task, shutdown_task]

        try:
            done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

            if indexer_task in done:
                exit_code = self._report(indexer_task)
                # Queue is finished; let the consumer drain what was delivered
                consumer_code = await self._drain_consumer(consumer_task)
                return max(exit_code, consumer_code)

            if consumer_task in done:
                self._logger.warning("Consumer task completed, stopping indexer")
                self._indexer.stop()
                indexer_task.cancel()
                return self._report(consumer_task)

            self._logger.info("Shutdown requested, stopping tasks")
            self._indexer.stop()
            indexer_task.cancel()
            await asyncio.gather(indexer_task, return_exceptions=True)
            self._queue.finish()
            await self._drain_consumer(consumer_task)
            return 0
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._logger.info("Supervisor finished after %d restarts", self.restarts)

    async def _drain_consumer(self, consumer_task: asyncio.Task) -> int:
        try:
            await asyncio.wait_for(asyncio.shield(consumer_task), timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            self._logger.warning("Consumer did not drain within %.0fs", self._drain_timeout)
            consumer_task.cancel()
            return 0
        except Exception:
            return self._report(consumer_task)
        return 0

    def _report(self, task: asyncio.Task) -> int:
        if task.cancelled():
            self._logger.info("Task %s cancelled", task.get_name())
            return 0
        exc = task.exception()
        if exc is not None:
            self._logger.critical(
                "Task %s failed with unhandled exception: %s",
                task.get_name(),
                exc,
                exc_info=exc,
            )
            return 1
        self._logger.info("Task %s completed", task.get_name())
        return 0
