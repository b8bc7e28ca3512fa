"""Worker loop for embedding generation.

This worker:
1. Reclaims items abandoned in processing by a dead worker
2. Pulls a batch of pending items, oldest first
3. Builds each item's payload from its source record
4. Calls the embedding function
5. Writes back completed / retry / failed
"""

import logging
import threading
import uuid
from typing import Optional

from .config import (
    BATCH_SIZE, POLL_INTERVAL_MS, MAX_ATTEMPTS, HEARTBEAT_EVERY,
    STALE_PROCESSING_SECONDS, FAIL_FAST_ON_MISSING_ENTITY
)
from .embedding_service import EmbeddingInvoker
from .errors import EntityNotFound
from .models import ProcessingOutcome, QueueItem, QueueStatus, Transition, decide_transition
from .payload_builder import PayloadBuilder
from .queue_store import QueueStore

logger = logging.getLogger(__name__)


class EmbeddingWorker:
    """Worker that processes embedding items from the queue.

    Features:
    - One item in flight at a time
    - Automatic retry up to max_attempts
    - Stale processing recovery
    - Heartbeat logging
    - Interruptible sleep for prompt shutdown
    """

    def __init__(
        self,
        store: QueueStore,
        payload_builder: PayloadBuilder,
        invoker: EmbeddingInvoker,
        batch_size: int = BATCH_SIZE,
        poll_interval_ms: int = POLL_INTERVAL_MS,
        max_attempts: int = MAX_ATTEMPTS,
        heartbeat_every: int = HEARTBEAT_EVERY,
        stale_after_seconds: int = STALE_PROCESSING_SECONDS,
        fail_fast_on_missing: bool = FAIL_FAST_ON_MISSING_ENTITY
    ):
        self.worker_id = f"worker-{uuid.uuid4().hex[:8]}"
        self.store = store
        self.payload_builder = payload_builder
        self.invoker = invoker
        self.batch_size = batch_size
        self.poll_interval_ms = poll_interval_ms
        self.max_attempts = max_attempts
        self.heartbeat_every = heartbeat_every
        self.stale_after_seconds = stale_after_seconds
        self.fail_fast_on_missing = fail_fast_on_missing

        self.iteration = 0
        self.processed_total = 0
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    def stop(self):
        """Ask the loop to exit at the next item boundary or sleep."""
        self._stop.set()

    def run(self):
        """Main worker loop.

        Runs cycles until stop() is called. Errors inside a cycle are
        logged and the loop carries on after the normal sleep.
        """
        logger.info(f"Worker {self.worker_id} started")

        while self.running:
            self.iteration += 1
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)

            if self.iteration % self.heartbeat_every == 0:
                logger.info(
                    f"Worker {self.worker_id} heartbeat: cycle {self.iteration}, "
                    f"{self.processed_total} items processed"
                )

            self._stop.wait(self.poll_interval_ms / 1000)

        logger.info(f"Worker {self.worker_id} stopped")

    def run_cycle(self) -> int:
        """Run one poll cycle without sleeping.

        Returns:
            Number of items this worker claimed and processed
        """
        if self.stale_after_seconds > 0:
            reclaimed = self.store.requeue_stale(self.stale_after_seconds, self.max_attempts)
            if reclaimed:
                logger.info(f"Reclaimed {reclaimed} stale processing items")

        items = self.store.fetch_pending(self.batch_size)
        if not items:
            return 0

        logger.info(f"Found {len(items)} pending items to process")

        processed = 0
        for item in items:
            if not self.running:
                break
            if self.process_item(item) is not None:
                processed += 1

        self.processed_total += processed
        return processed

    def process_item(self, item: QueueItem) -> Optional[Transition]:
        """Claim, process and write back a single item.

        Returns:
            The transition applied, or None if another worker claimed it
        """
        if not self.store.mark_processing(item.id):
            logger.debug(f"Item {item.id} already claimed, skipping")
            return None

        logger.info(f"Processing {item.entity_type.value}: {item.entity_id}")

        outcome = self._process(item)
        transition = decide_transition(item, outcome, self.max_attempts)
        self.store.apply_transition(item.id, transition)
        self._log_transition(item, transition)
        return transition

    def _process(self, item: QueueItem) -> ProcessingOutcome:
        try:
            payload = self.payload_builder.build(item.entity_type, item.entity_id)
        except EntityNotFound as e:
            return ProcessingOutcome.failure(str(e), permanent=self.fail_fast_on_missing)
        except Exception as e:
            return ProcessingOutcome.failure(f"{type(e).__name__}: {str(e)}")

        result = self.invoker.invoke(item.entity_type, payload)
        if result.success:
            return ProcessingOutcome.ok()
        return ProcessingOutcome.failure(result.error or "embedding function failed")

    def _log_transition(self, item: QueueItem, transition: Transition):
        label = f"{item.entity_type.value} {item.entity_id}"

        if transition.status is QueueStatus.COMPLETED:
            logger.info(f"Generated embedding for {label}")
        elif transition.status is QueueStatus.PENDING:
            logger.error(f"Failed {label}: {transition.error_message}")
            logger.info(f"Will retry {label} (attempt {transition.attempts}/{self.max_attempts})")
        else:
            logger.error(f"Failed {label}: {transition.error_message}")
            logger.warning(f"Giving up on {label} after {transition.attempts} attempts")
