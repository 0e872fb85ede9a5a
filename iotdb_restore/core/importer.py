"""Concurrent, batched tsfile loading through the IoTDB CLI."""

import logging
import posixpath
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from .errors import CommandCancelledError, CommandError, RestoreError
from .models import Batch, ImportOutcome, ImportResult

MEMORY_PROBE_COMMAND = "free -m | grep Mem | awk '{print $7}'"


class SuccessMarkerClassifier:
    """Judges a load by looking for a marker in its combined output.

    Matching is a case-insensitive substring search, so ``"success"`` also
    matches ``"Successfully"``.
    """

    def __init__(self, markers: Sequence[str] = ("success",)):
        self.markers = tuple(marker.lower() for marker in markers)

    def is_success(self, output) -> bool:
        combined = output.combined.lower()
        return any(marker in combined for marker in self.markers)


class ExitStatusClassifier:
    """Judges a load by the command's exit status alone."""

    def is_success(self, output) -> bool:
        return output.exit_code == 0


class BatchImporter:
    """Loads a manifest of tsfiles into IoTDB, batch by batch.

    Batches run strictly one after another. Inside a batch at most
    ``concurrency`` loads are in flight; the rest wait for a worker. A failed
    load is counted and logged but never stops its batch or the import.
    """

    def __init__(self, executor, cli_path: str, host: str, batch_size: int = 3,
                 concurrency: int = 1, batch_pause: bool = True, batch_delay: float = 3,
                 classifier=None, log_memory: bool = False,
                 cancel_event: Optional[threading.Event] = None,
                 logger: Optional[logging.Logger] = None):
        """Initialize batch importer.

        Args:
            executor: Object exposing ``execute(command) -> CommandOutput``.
            cli_path: Path of the IoTDB CLI inside the pod.
            host: IoTDB host the CLI connects to.
            batch_size: Number of files per batch.
            concurrency: Maximum concurrent loads.
            batch_pause: Whether to pause between batches.
            batch_delay: Pause length in seconds.
            classifier: Decides whether a load succeeded. Defaults to
                ``SuccessMarkerClassifier``.
            log_memory: Log the pod's free memory before each batch.
            cancel_event: Event that stops the import when set.
            logger: Logger to use.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be positive, got {concurrency}")

        self.executor = executor
        self.cli_path = cli_path
        self.host = host
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.batch_pause = batch_pause
        self.batch_delay = batch_delay
        self.classifier = classifier or SuccessMarkerClassifier()
        self.log_memory = log_memory
        self.cancel_event = cancel_event or threading.Event()
        self.logger = logger or logging.getLogger(__name__)

    def build_load_command(self, file_path: str) -> str:
        return f"{self.cli_path} -h {self.host} -e \"load '{file_path}' verify=false\""

    def partition(self, files: Sequence[str]) -> List[Batch]:
        """Split the manifest into ordered, contiguous batches."""
        return [
            Batch(number=index // self.batch_size + 1,
                  files=tuple(files[index:index + self.batch_size]))
            for index in range(0, len(files), self.batch_size)
        ]

    def import_files(self, files: Sequence[str]) -> ImportResult:
        """Import every file in the manifest.

        Returns:
            Aggregate counts plus the completed batches. ``success_count +
            failed_count`` always equals ``total_files``.
        """
        started = time.monotonic()
        total_files = len(files)
        batches = self.partition(files)

        self.logger.info(f"Importing {total_files} tsfiles in {len(batches)} batches "
                         f"(batch size {self.batch_size}, concurrency {self.concurrency})")

        processed = 0
        for batch in batches:
            if self.log_memory:
                self._log_free_memory()

            self.run_batch(batch)
            processed += len(batch.files)

            progress = processed / total_files * 100
            self.logger.info(f"Batch {batch.number}/{len(batches)} done: "
                             f"{batch.success} ok, {batch.failed} failed "
                             f"({processed}/{total_files}, {progress:.1f}%)")

            is_last = batch.number == len(batches)
            if not is_last and self.batch_pause and self.batch_delay > 0:
                self.logger.info(f"Pausing {self.batch_delay}s to let IoTDB release memory")
                self.cancel_event.wait(self.batch_delay)

        success_count = sum(batch.success for batch in batches)
        failed_count = sum(batch.failed for batch in batches)
        duration = timedelta(seconds=time.monotonic() - started)

        self.logger.info(f"Import finished: {total_files} files, {success_count} ok, "
                         f"{failed_count} failed in {duration}")

        return ImportResult(
            total_files=total_files,
            success_count=success_count,
            failed_count=failed_count,
            duration=duration,
            batches=batches,
        )

    def run_batch(self, batch: Batch) -> Batch:
        """Load every file of one batch and wait for all of them."""
        batch.start_time = datetime.now()
        self.logger.info(f"Starting batch {batch.number} with {len(batch.files)} files")

        workers = min(self.concurrency, len(batch.files))
        with ThreadPoolExecutor(max_workers=workers,
                                thread_name_prefix=f"import-batch-{batch.number}") as pool:
            outcomes = list(pool.map(self.import_file, batch.files))

        batch.success = sum(1 for outcome in outcomes if outcome.success)
        batch.failed = len(outcomes) - batch.success
        batch.end_time = datetime.now()
        return batch

    def import_file(self, file_path: str) -> ImportOutcome:
        """Load one tsfile. Failures are returned, never raised."""
        name = posixpath.basename(file_path)

        if self.cancel_event.is_set():
            return ImportOutcome(file_path, False, CommandCancelledError(f"Skipped {name}: cancelled"))

        self.logger.debug(f"Loading {name}")
        try:
            output = self.executor.execute(self.build_load_command(file_path))
        except Exception as e:
            self.logger.error(f"Import failed for {name}: {e}")
            return ImportOutcome(file_path, False, e)

        if not self.classifier.is_success(output):
            error = CommandError(f"Load reported no success for {name}",
                                 stdout=output.stdout, stderr=output.stderr,
                                 exit_code=output.exit_code)
            self.logger.error(f"Import failed for {name}: {output.stderr.strip() or output.stdout.strip()}")
            return ImportOutcome(file_path, False, error)

        self.logger.debug(f"Imported {name}")
        return ImportOutcome(file_path, True)

    def _log_free_memory(self) -> None:
        try:
            output = self.executor.execute(MEMORY_PROBE_COMMAND)
        except RestoreError as e:
            self.logger.debug(f"Could not read free memory: {e}")
            return

        value = output.stdout.strip()
        if value.isdigit():
            self.logger.debug(f"Free memory in pod: {value} MB")
