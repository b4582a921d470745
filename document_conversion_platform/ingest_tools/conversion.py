"""
Conversion Pool - a fixed-size thread pool that materializes work items to
scratch files and runs the external converter on them.

Submission is fire-and-forget: the dispatcher never waits for a conversion,
and failures are visible only through the logs and the state left in Redis.
A failed conversion keeps its PROCESSING claim until the record expires,
after which the file can be converted again.
"""
import logging
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from document_conversion_platform.ingest_tools.converters import ConversionError

logger = logging.getLogger(__name__)


class ConversionPool:
    """Bounded pool of conversion workers"""

    def __init__(self, converter, tracker, scratch_dir, output_dir,
                 target_extension="pdf", max_workers=None):
        """
        Args:
            converter: Backend exposing convert(source, target)
            tracker: StateTracker of the 'processed' namespace
            scratch_dir: Directory for temporary payload files
            output_dir: Directory receiving converted files
            target_extension: Extension of converted files, without the dot
            max_workers: Pool size (defaults to the number of CPUs)
        """
        self.converter = converter
        self.tracker = tracker
        self.scratch_dir = Path(scratch_dir)
        self.output_dir = Path(output_dir)
        self.target_extension = target_extension.lstrip(".")
        self.max_workers = max_workers or os.cpu_count() or 1
        self._executor = None

    def start(self):
        """Create the scratch and output directories and the worker threads"""
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="conversion-worker"
            )
        logger.info(
            f"stage=conversion event=pool_started workers={self.max_workers} "
            f"scratch_dir={self.scratch_dir} output_dir={self.output_dir}"
        )

    def shutdown(self, wait=True):
        """Stop accepting work, drain the pool and remove the scratch directory"""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        shutil.rmtree(self.scratch_dir, ignore_errors=True)
        logger.info(f"stage=conversion event=pool_stopped scratch_dir={self.scratch_dir}")

    def output_path_for(self, filename):
        """Output path of filename with its extension replaced by the target extension"""
        return self.output_dir / f"{Path(filename).stem}.{self.target_extension}"

    def submit(self, item):
        """
        Queue item for conversion.

        Returns:
            Future of convert(item); callers may ignore it
        """
        if self._executor is None:
            raise RuntimeError("Conversion pool is not started")
        future = self._executor.submit(self.convert, item)
        future.add_done_callback(lambda f: self._log_outcome(item.filename, f))
        return future

    def _log_outcome(self, filename, future):
        if future.cancelled():
            logger.warning(f"stage=conversion event=job_cancelled file={filename}")
            return
        error = future.exception()
        if error is not None:
            logger.error(
                f"stage=conversion event=job_failed file={filename} "
                f"error_type={type(error).__name__} error={error}",
                exc_info=error
            )

    def _write_scratch_file(self, item):
        fd, scratch_path = tempfile.mkstemp(
            prefix="_temp",
            suffix=Path(item.filename).suffix,
            dir=self.scratch_dir
        )
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(item.payload)
        except BaseException:
            os.unlink(scratch_path)
            raise
        return Path(scratch_path)

    def convert(self, item):
        """
        Claim, convert and mark one work item.

        Returns:
            Path of the converted file, or None if another worker owns the file

        Raises:
            ConversionError: the converter failed
            OSError: the scratch file could not be written
        """
        filename = item.filename

        if not self.tracker.try_claim(filename):
            logger.info(f"stage=conversion event=claim_lost file={filename}")
            return None

        logger.info(f"stage=conversion event=job_started file={filename}")
        output_path = self.output_path_for(filename)

        scratch_path = self._write_scratch_file(item)
        try:
            self.converter.convert(scratch_path, output_path)
        except ConversionError:
            raise
        except Exception as e:
            raise ConversionError(f"Converting {filename} failed: {e}") from e
        finally:
            scratch_path.unlink(missing_ok=True)

        self.tracker.mark_processed(filename)
        logger.info(f"stage=conversion event=job_completed file={filename} output={output_path}")
        return output_path
