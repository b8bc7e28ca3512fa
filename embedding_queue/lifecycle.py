"""Startup and shutdown for the embedding worker process."""

import logging
import signal
import sys

from . import config
from .embedding_service import EmbeddingInvoker
from .errors import ConfigurationError
from .payload_builder import PayloadBuilder
from .queue_store import create_queue_store
from .supabase_client import get_supabase_client
from .worker import EmbeddingWorker

logger = logging.getLogger(__name__)


def setup_logging(level: str = config.LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='[%(asctime)s] %(levelname)s - %(name)s - %(message)s'
    )


def build_worker() -> EmbeddingWorker:
    """Validate configuration, connect to the backends and wire a worker.

    Raises:
        ConfigurationError: If required settings are missing
    """
    config.validate_config()

    client = get_supabase_client()
    store = create_queue_store(
        config.QUEUE_BACKEND,
        supabase_client=client,
        redis_url=config.REDIS_URL,
        table=config.QUEUE_TABLE,
    )
    # Fail at startup rather than on the first poll
    store.get_stats()
    logger.info(f"Connected to {config.QUEUE_BACKEND} queue backend")

    return EmbeddingWorker(
        store=store,
        payload_builder=PayloadBuilder(client),
        invoker=EmbeddingInvoker(client),
        batch_size=config.BATCH_SIZE,
        poll_interval_ms=config.POLL_INTERVAL_MS,
        max_attempts=config.MAX_ATTEMPTS,
        heartbeat_every=config.HEARTBEAT_EVERY,
        stale_after_seconds=config.STALE_PROCESSING_SECONDS,
        fail_fast_on_missing=config.FAIL_FAST_ON_MISSING_ENTITY,
    )


def install_signal_handlers(worker: EmbeddingWorker):
    """Exit immediately on SIGTERM/SIGINT.

    There is no drain: an item claimed when the signal arrives stays in
    processing until stale reclaim picks it up.
    """
    def _shutdown(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        worker.stop()
        sys.exit(0)

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)


def main():
    """Entry point for worker process."""
    setup_logging()

    try:
        worker = build_worker()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Worker failed to start: {e}", exc_info=True)
        sys.exit(1)

    logger.info("Embedding generation worker starting")
    logger.info(f"Poll interval: {worker.poll_interval_ms}ms")
    logger.info(f"Batch size: {worker.batch_size}")
    logger.info(f"Max attempts: {worker.max_attempts}")

    install_signal_handlers(worker)
    worker.run()


if __name__ == "__main__":
    main()
