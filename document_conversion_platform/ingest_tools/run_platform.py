#!/usr/bin/env python3

import sys
import logging
import argparse
import signal
import datetime
import threading
from pathlib import Path

from config import config
from config.worker_config import (
    CONVERSION_WORKERS,
    ERROR_BACKOFF,
    KILL_TIMEOUT,
    LOCAL_FILTER_SIZE,
    MEMORY_THRESHOLD_PERCENT,
    MONITOR_INTERVAL,
    MONITORED_BINARY,
    QUEUE_TIMEOUT,
    SCAN_INTERVAL,
    SHUTDOWN_GRACE_PERIOD,
)
from document_conversion_platform.db.idempotency_store import RedisIdempotencyStore
from document_conversion_platform.db.local_filter import LocalIdempotentFilter
from document_conversion_platform.db.state_tracker import FileState, StateTracker
from document_conversion_platform.ingest_tools.conversion import ConversionPool
from document_conversion_platform.ingest_tools.converters import build_converter, soffice_available
from document_conversion_platform.ingest_tools.dispatch_filter import DispatchFilter
from document_conversion_platform.ingest_tools.ingestion_router import IngestionRouter
from document_conversion_platform.ingest_tools.process_monitor import ProcessMonitor, ProcessTable
from document_conversion_platform.ingest_tools.work_queue import WorkQueue


# Configure logging
def setup_logging(log_dir, level=logging.INFO):
    """Set up logging configuration"""
    timestamp = datetime.datetime.now().strftime("%Y%m%d")  # Just use date, not time
    log_dir = Path(log_dir)
    log_dir.mkdir(exist_ok=True, parents=True)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    formatter = logging.Formatter('%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s')

    # Console handler
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root_logger.addHandler(console)

    # File handler for the platform process
    main_log_file = log_dir / f"conversion_platform_{timestamp}.log"
    restarted = main_log_file.exists() and main_log_file.stat().st_size > 0
    file_handler = logging.FileHandler(main_log_file, mode='a')  # Use append mode
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)
    root_logger.addHandler(file_handler)

    # Log restart information if file already has content
    if restarted:
        logging.info("=" * 50)
        logging.info(f"Platform restarted at {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logging.info("=" * 50)

    return log_dir, timestamp


def build_trackers(store, key_prefix=config.KEY_PREFIX, ttl=config.IDEMPOTENCY_TTL_SECONDS):
    """Trackers of the 'read' and 'processed' namespaces"""
    read_tracker = StateTracker(
        store, config.READ_NAMESPACE, claim_state=FileState.READ, ttl=ttl, key_prefix=key_prefix
    )
    processed_tracker = StateTracker(
        store, config.PROCESSED_NAMESPACE, claim_state=FileState.PROCESSING, ttl=ttl, key_prefix=key_prefix
    )
    return read_tracker, processed_tracker


class ConversionPlatform:
    def __init__(self, store, converter, input_dir=config.INPUT_DIR, output_dir=config.OUTPUT_DIR,
                 scratch_dir=config.SCRATCH_DIR, suffix=config.INPUT_SUFFIX,
                 target_extension=config.TARGET_EXTENSION, workers=CONVERSION_WORKERS,
                 local_filter_path=config.LOCAL_FILTER_PATH, monitor_table=None):
        self.store = store
        self.converter = converter
        self.input_dir = Path(input_dir)
        self.output_dir = Path(output_dir)
        self.scratch_dir = Path(scratch_dir)
        self.suffix = suffix
        self.target_extension = target_extension
        self.workers = workers
        self.local_filter_path = local_filter_path
        self.monitor_table = monitor_table
        self.shutdown_event = threading.Event()
        self.threads = {}
        self.running = False

        self.router = None
        self.dispatcher = None
        self.pool = None
        self.monitor = None

    def build_components(self):
        """Wire every component onto the (already open) store"""
        read_tracker, processed_tracker = build_trackers(self.store)
        queue = WorkQueue(self.store.client, config.WORK_QUEUE)

        self.pool = ConversionPool(
            converter=self.converter,
            tracker=processed_tracker,
            scratch_dir=self.scratch_dir,
            output_dir=self.output_dir,
            target_extension=self.target_extension,
            max_workers=self.workers
        )
        self.router = IngestionRouter(
            input_dir=self.input_dir,
            queue=queue,
            local_filter=LocalIdempotentFilter(self.local_filter_path, max_size=LOCAL_FILTER_SIZE),
            read_tracker=read_tracker,
            suffix=self.suffix,
            scan_interval=SCAN_INTERVAL
        )
        self.dispatcher = DispatchFilter(
            queue=queue,
            tracker=processed_tracker,
            pool=self.pool,
            queue_timeout=QUEUE_TIMEOUT,
            error_backoff=ERROR_BACKOFF
        )
        self.monitor = ProcessMonitor(
            table=self.monitor_table or ProcessTable(kill_timeout=KILL_TIMEOUT),
            binary_name=MONITORED_BINARY,
            memory_threshold=MEMORY_THRESHOLD_PERCENT,
            interval=MONITOR_INTERVAL
        )

    def start_component(self, name, target):
        """Start a component loop in its own daemon thread"""
        logging.info(f"Starting {name} component...")
        thread = threading.Thread(target=target, args=(self.shutdown_event,), name=name, daemon=True)
        thread.start()
        self.threads[name] = thread
        return thread

    def start_platform(self):
        """Open the store and start every component"""
        logging.info("Starting document conversion platform...")
        self.store.open()
        if not self.store.ping():
            logging.error("Redis is not reachable. Exiting.")
            self.store.close()
            return False

        self.running = True
        self.build_components()
        self.pool.start()

        self.start_component("process-monitor", self.monitor.run)
        self.start_component("dispatch-filter", self.dispatcher.run)
        self.start_component("ingestion-router", self.router.run)

        logging.info(
            f"All platform components started. input={self.input_dir} output={self.output_dir} "
            f"workers={self.pool.max_workers}"
        )
        return True

    def wait(self):
        """Block until shutdown is requested"""
        try:
            while not self.shutdown_event.is_set():
                for name, thread in self.threads.items():
                    if not thread.is_alive():
                        logging.warning(f"{name} stopped unexpectedly")
                self.shutdown_event.wait(15)
        except KeyboardInterrupt:
            logging.info("Received interrupt, shutting down...")
        self.shutdown()

    def shutdown(self):
        """Gracefully shutdown all components"""
        if not self.running:
            return
        logging.info("Shutting down platform components...")
        self.running = False
        self.shutdown_event.set()

        for name, thread in self.threads.items():
            logging.info(f"Stopping {name}...")
            thread.join(timeout=SHUTDOWN_GRACE_PERIOD)
            if thread.is_alive():
                logging.warning(f"{name} did not stop within {SHUTDOWN_GRACE_PERIOD}s")

        # Waits for in-flight conversions, then removes the scratch directory
        self.pool.shutdown(wait=True)
        self.store.close()
        logging.info("All components stopped.")


def show_status(store, filename):
    """Print the state of filename in both namespaces"""
    read_tracker, processed_tracker = build_trackers(store)
    for tracker in (read_tracker, processed_tracker):
        print(f"{tracker.namespace}: {tracker.state(filename).value}")


def reset_file(store, filename):
    """Delete both records of filename so it is converted again"""
    read_tracker, processed_tracker = build_trackers(store)
    for tracker in (read_tracker, processed_tracker):
        removed = tracker.remove(filename)
        print(f"{tracker.namespace}: {'removed' if removed else 'no record'}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the document conversion platform")
    parser.add_argument("--input-dir", default=config.INPUT_DIR, help="Directory watched for new documents")
    parser.add_argument("--output-dir", default=config.OUTPUT_DIR, help="Directory receiving converted documents")
    parser.add_argument("--scratch-dir", default=config.SCRATCH_DIR, help="Directory for temporary files")
    parser.add_argument("--suffix", default=config.INPUT_SUFFIX, help="Suffix of files to ingest")
    parser.add_argument("--target-extension", default=config.TARGET_EXTENSION, help="Extension of converted files")
    parser.add_argument("--workers", type=int, default=CONVERSION_WORKERS, help="Conversion pool size")
    parser.add_argument("--converter", default=config.CONVERTER_BACKEND, choices=["libreoffice", "docling"],
                        help="Converter backend")
    parser.add_argument("--log-dir", default=config.LOG_DIR, help="Directory to store logs")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--status", metavar="FILE", help="Print the stored state of FILE and exit")
    parser.add_argument("--reset", metavar="FILE", help="Delete the stored state of FILE and exit")
    args = parser.parse_args(argv)

    store = RedisIdempotencyStore(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_DB,
        max_connections=config.REDIS_MAX_CONNECTIONS
    )

    if args.status or args.reset:
        logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)
        with store:
            if args.status:
                show_status(store, args.status)
            if args.reset:
                reset_file(store, args.reset)
        return 0

    level = logging.DEBUG if args.debug else getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    setup_logging(args.log_dir, level)

    if args.converter == "libreoffice":
        if not soffice_available(config.SOFFICE_BINARY):
            logging.warning(f"{config.SOFFICE_BINARY} not found on PATH; conversions will fail")
        converter = build_converter("libreoffice", soffice=config.SOFFICE_BINARY,
                                    profile_root=Path(args.scratch_dir) / "profiles")
    else:
        converter = build_converter(args.converter)

    platform = ConversionPlatform(
        store=store,
        converter=converter,
        input_dir=args.input_dir,
        output_dir=args.output_dir,
        scratch_dir=args.scratch_dir,
        suffix=args.suffix,
        target_extension=args.target_extension,
        workers=args.workers
    )

    # Handle Ctrl+C and termination signal
    def signal_handler(sig, frame):
        logging.info("Received termination signal...")
        platform.shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not platform.start_platform():
        logging.error("Failed to start platform")
        return 1

    platform.wait()
    return 0


if __name__ == "__main__":
    sys.exit(main())
