"""
Kanshi Indexer: Main Entrypoint.

Single-process asyncio runner with two concurrent tasks:
    1. IndexerService: consumes the filtered Starknet event stream and
                       checkpoints progress per block
    2. EventConsumer : applies business logic to each decoded event

The tasks communicate through one HandoffQueue. A Supervisor restarts the
indexer after transient failures and decides the process exit code.

Usage:
    python main.py --contract-address 0x... --apibara-key dna_...
    python main.py --network sepolia --storage-url postgres://... --checkpoint-backend storage
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Sequence

from dotenv import load_dotenv

from config.loader import IndexerSettings, collect_settings, get_config
from config.validate import ConfigValidationError, validate_settings
from core.consumer import EventConsumer
from core.handoff import HandoffQueue
from core.indexer import IndexerService
from core.supervisor import Supervisor
from indexer_logging.logger_manager import (
    create_module_log_directories,
    get_log_dir,
    setup_module_logger,
)
from shared.exceptions import StorageError
from shared.types import EventFilter, SubscriptionConfig
from storage.checkpoint import CheckpointStore, FileCheckpointStore, StorageCheckpointStore
from storage.object_store import ObjectStore

# ---------------------------------------------------------------------------
# Module logger
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(settings: IndexerSettings, checkpoint: CheckpointStore) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("Kanshi indexer starting")
    _logger.info("=" * 60)
    _logger.info("  network         : %s", settings.network.value)
    _logger.info("  stream          : %s", settings.stream_url)
    _logger.info("  contract        : %s", settings.contract_address)
    _logger.info("  starting_block  : %d", settings.starting_block)
    _logger.info("  finality        : %s", settings.finality.name)
    _logger.info("  checkpoint      : %s", checkpoint.describe())
    _logger.info("  logs            : %s", get_log_dir())
    _logger.info(
        "  handoff queue   : %s",
        f"max {settings.queue_maxsize} ({settings.queue_policy.value})"
        if settings.queue_maxsize
        else "unbounded",
    )
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_subscription(settings: IndexerSettings) -> SubscriptionConfig:
    return SubscriptionConfig(
        starting_block=settings.starting_block,
        finality=settings.finality,
        header_mode=settings.header_mode,
        event_filters=(EventFilter(from_address=settings.contract_address),),
        batch_size=settings.batch_size,
    )


async def _run(argv: Sequence[str] | None = None) -> int:
    """Wire all components and run until completion. Returns the exit code."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()
    create_module_log_directories()

    try:
        settings = validate_settings(collect_settings(argv))
    except ConfigValidationError as exc:
        _logger.critical("Failed to load configuration:\n%s", exc)
        return 1
    _logger.info("Configurations loaded")

    # ------------------------------------------------------------------
    # 2. Checkpoint store (local file or shared object store)
    # ------------------------------------------------------------------
    object_store: ObjectStore | None = None
    checkpoint: CheckpointStore
    if settings.checkpoint_backend == "storage":
        object_store = ObjectStore(settings.storage_url)
        try:
            await object_store.check_connection()
        except StorageError as exc:
            _logger.critical("Cannot reach storage at %s: %s", settings.storage_url, exc)
            await object_store.close()
            return 1
        checkpoint = StorageCheckpointStore(object_store, settings.checkpoint_key)
    else:
        checkpoint = FileCheckpointStore(settings.checkpoint_path)

    _log_banner(settings, checkpoint)

    # ------------------------------------------------------------------
    # 3. Pipeline components
    # ------------------------------------------------------------------
    queue: HandoffQueue = HandoffQueue(
        maxsize=settings.queue_maxsize,
        overflow_policy=settings.queue_policy,
        put_timeout=settings.queue_put_timeout,
    )
    indexer = IndexerService(
        checkpoint_store=checkpoint,
        subscription=build_subscription(settings),
        stream_url=settings.stream_url,
        api_key=settings.apibara_key,
    )
    consumer = EventConsumer(queue)

    supervisor_cfg = get_config().get_supervisor_config()
    supervisor = Supervisor(
        indexer,
        consumer,
        queue,
        max_restarts=settings.max_restarts,
        base_delay=supervisor_cfg.get("base_delay_seconds", 2),
        max_delay=supervisor_cfg.get("max_delay_seconds", 60),
        jitter_max=supervisor_cfg.get("jitter_max_seconds", 1.0),
    )

    # ------------------------------------------------------------------
    # 4. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        supervisor.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 5. Run until the supervisor decides
    # ------------------------------------------------------------------
    try:
        exit_code = await supervisor.run()
    finally:
        if object_store is not None:
            try:
                await object_store.close()
            except StorageError as exc:
                _logger.warning("Error closing storage: %s", exc)
        if queue.dropped:
            _logger.warning(
                "Hand-off queue dropped %d events (policy %s, max %d)",
                queue.dropped,
                queue.policy.value,
                queue.maxsize,
            )
        _logger.info(
            "Shutdown complete: %d events queued, %d delivered, %d dropped, "
            "%d processed, last block %s",
            indexer.stats.events,
            queue.delivered,
            queue.dropped,
            consumer.processed,
            indexer.last_saved_block,
        )
    return exit_code


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> None:
    """Synchronous entry point."""
    try:
        exit_code = asyncio.run(_run(argv))
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
