"""
Ingestion Router - scans the input directory and publishes a work item for
every new matching document.

Files are read but never moved or deleted, so every scan sees them again.
A local idempotent filter skips files this process already published, and
an optional Redis-backed read tracker keeps several routers (or a restarted
one) from publishing the same file twice.
"""
import logging
import os
import time
from pathlib import Path

from document_conversion_platform.db.state_tracker import FileState
from document_conversion_platform.ingest_tools.work_queue import WorkItem

logger = logging.getLogger(__name__)


class IngestionRouter:
    """Scans the input directory and feeds the work queue"""

    def __init__(self, input_dir, queue, local_filter, read_tracker=None,
                 suffix=".docx", scan_interval=10):
        """
        Args:
            input_dir: Directory watched for new documents
            queue: WorkQueue receiving the work items
            local_filter: LocalIdempotentFilter of already published filenames
            read_tracker: StateTracker of the 'read' namespace, or None
            suffix: Only filenames ending with this suffix are ingested
            scan_interval: Seconds between scans in run()
        """
        self.input_dir = Path(input_dir)
        self.queue = queue
        self.local_filter = local_filter
        self.read_tracker = read_tracker
        self.suffix = suffix.lower()
        self.scan_interval = scan_interval
        self.router_id = "ingestion-router"

    def matching_files(self):
        """Sorted list of regular files in the input directory matching the suffix"""
        if not self.input_dir.is_dir():
            logger.warning(f"router_id={self.router_id} event=input_dir_not_found path={self.input_dir}")
            return []
        return sorted(
            entry for entry in self.input_dir.iterdir()
            if entry.is_file() and entry.name.lower().endswith(self.suffix)
        )

    def route(self, path):
        """
        Run the dedup checks for one observed file and publish it if admitted.

        Returns:
            True if a work item was published, False if the file was skipped
        """
        filename = path.name

        if self.local_filter.contains(filename):
            logger.debug(f"router_id={self.router_id} event=skipped reason=seen_locally file={filename}")
            return False

        if self.read_tracker is not None:
            if self.read_tracker.state(filename) is FileState.UNKNOWN:
                # Store unreachable: leave the file for the next scan
                logger.warning(f"router_id={self.router_id} event=skipped reason=store_unavailable file={filename}")
                return False
            if not self.read_tracker.try_claim(filename):
                # A failed write also lands here, so only a confirmed record is remembered
                if self.read_tracker.state(filename) is FileState.READ:
                    logger.debug(f"router_id={self.router_id} event=skipped reason=already_read file={filename}")
                    self.local_filter.add(filename)
                else:
                    logger.warning(f"router_id={self.router_id} event=skipped reason=claim_failed file={filename}")
                return False

        try:
            payload = path.read_bytes()
            self.queue.publish(WorkItem(filename=filename, payload=payload))
        except Exception:
            if self.read_tracker is not None:
                self.read_tracker.remove(filename)
            raise

        self.local_filter.add(filename)
        logger.info(f"router_id={self.router_id} event=admitted file={filename} bytes={len(payload)}")
        return True

    def scan(self):
        """
        Scan the input directory once.

        Returns:
            Number of work items published in this scan
        """
        published = 0
        skipped = 0
        failed = 0

        files = self.matching_files()
        for path in files:
            try:
                if self.route(path):
                    published += 1
                else:
                    skipped += 1
            except Exception as e:
                failed += 1
                logger.error(f"router_id={self.router_id} event=route_failed file={path.name} error={e}")

        logger.info(
            f"router_id={self.router_id} event=scan_completed files_found={len(files)} "
            f"published={published} skipped={skipped} failed={failed}"
        )
        return published

    def run(self, shutdown_event):
        """Scan every scan_interval seconds until shutdown_event is set"""
        logger.info(
            f"router_id={self.router_id} event=router_started path={self.input_dir} "
            f"suffix={self.suffix} scan_interval={self.scan_interval}s"
        )

        while not shutdown_event.is_set():
            try:
                self.scan()
            except Exception as e:
                logger.error(f"router_id={self.router_id} event=error error={e}")
                logger.exception("Detailed error information:")
            shutdown_event.wait(self.scan_interval)

        logger.info(f"router_id={self.router_id} event=shutdown_complete")
