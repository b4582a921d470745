"""
Dispatch Filter - admission gate between the work queue and the conversion
pool. Re-checks the processed namespace for every delivered work item so that
duplicates are dropped across router instances and process restarts.
"""
import logging
import threading

from document_conversion_platform.db.state_tracker import FileState

logger = logging.getLogger(__name__)


class DispatchFilter:
    """Consumes the work queue and submits admitted items to the conversion pool"""

    def __init__(self, queue, tracker, pool, queue_timeout=5, error_backoff=5):
        """
        Args:
            queue: WorkQueue to consume
            tracker: StateTracker of the 'processed' namespace
            pool: ConversionPool receiving admitted items
            queue_timeout: Seconds a blocking pop waits before re-checking shutdown
            error_backoff: Seconds to wait after an unexpected error
        """
        self.queue = queue
        self.tracker = tracker
        self.pool = pool
        self.queue_timeout = queue_timeout
        self.error_backoff = error_backoff

    def admit(self, item, shutdown_event=None):
        """
        Submit item to the pool unless it is already processed or in flight.

        Deferred items are put back on the queue. shutdown_event bounds the
        requeue retries when the queue itself is unreachable.

        Returns:
            True if the item was submitted. The conversion itself is not awaited.
        """
        if shutdown_event is None:
            shutdown_event = threading.Event()
        return self._dispatch(item, shutdown_event) is FileState.NEW

    def _dispatch(self, item, shutdown_event):
        state = self.tracker.state(item.filename)

        if state is FileState.NEW:
            try:
                self.pool.submit(item)
            except RuntimeError as e:
                # Pool already stopped
                logger.warning(f"stage=dispatch event=deferred reason=pool_unavailable file={item.filename} error={e}")
                self._requeue(item, shutdown_event)
                return FileState.UNKNOWN
            logger.info(f"stage=dispatch event=admitted file={item.filename}")
        elif state is not FileState.UNKNOWN:
            # PROCESSED, or PROCESSING by another worker
            logger.info(f"stage=dispatch event=dropped file={item.filename} state={state.value}")
        else:
            # Fail closed: never convert without knowing, but keep the item
            logger.warning(f"stage=dispatch event=deferred reason=store_unavailable file={item.filename}")
            self._requeue(item, shutdown_event)
        return state

    def _requeue(self, item, shutdown_event):
        """Put item back on the queue, retrying every error_backoff seconds until shutdown"""
        while True:
            try:
                self.queue.requeue(item)
                return True
            except Exception as e:
                logger.error(f"stage=dispatch event=requeue_failed file={item.filename} error={e}")
            if shutdown_event.is_set():
                logger.error(f"stage=dispatch event=item_lost file={item.filename}")
                return False
            shutdown_event.wait(self.error_backoff)

    def run(self, shutdown_event):
        """Main loop - pop work items and admit them until shutdown_event is set"""
        logger.info(f"stage=dispatch event=dispatcher_started queue={self.queue.name}")

        while not shutdown_event.is_set():
            try:
                item = self.queue.consume(timeout=self.queue_timeout)
                if item is not None and self._dispatch(item, shutdown_event) is FileState.UNKNOWN:
                    shutdown_event.wait(self.error_backoff)
            except Exception as e:
                logger.error(f"stage=dispatch event=dispatcher_error error={e}")
                logger.exception("Detailed error information:")
                shutdown_event.wait(self.error_backoff)

        logger.info("stage=dispatch event=shutdown_complete")
