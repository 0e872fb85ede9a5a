"""Restore orchestration: download, extract, delete, import, clean up."""

import logging
import os
import posixpath
import threading
from datetime import datetime
from typing import List, Optional

from .artifacts import build_backup_filename, build_backup_url, validate_timestamp
from .detector import HourlyWindowStrategy, PatternStrategy, TimestampDetector
from .downloader import HttpDownloader
from .errors import NotFoundError, RestoreError
from .executor import PodExecutor
from .importer import BatchImporter, ExitStatusClassifier, SuccessMarkerClassifier
from .kube import load_kube_client
from .models import BackupArtifact, RestoreJob, RestorePhase, RestoreResult, RestoreSettings

LISTING_PREVIEW_LINES = 20


def build_downloader(settings: RestoreSettings,
                     logger: Optional[logging.Logger] = None) -> HttpDownloader:
    return HttpDownloader(
        max_retries=settings.retry_count,
        retry_delay_seconds=settings.retry_delay_seconds,
        timeout_seconds=settings.http_timeout_seconds,
        logger=logger,
    )


def build_detector(settings: RestoreSettings, downloader,
                   logger: Optional[logging.Logger] = None) -> Optional[TimestampDetector]:
    """Build the timestamp detector, or None when auto-detection is disabled."""
    if not settings.auto_detect_timestamp:
        return None
    if settings.timestamp_pattern:
        strategy = PatternStrategy(settings.timestamp_pattern)
    else:
        strategy = HourlyWindowStrategy()
    return TimestampDetector(downloader, settings.base_url, settings.pod_name,
                             strategy=strategy, logger=logger)


class RestoreOrchestrator:
    """Runs one IoTDB restore from a backup archive into a pod.

    Download, extraction and file discovery are fatal: their errors end the
    run and are stored on the result. Preserving old data, deleting
    databases and cleanup are best-effort and only logged.
    """

    def __init__(self, settings: RestoreSettings, executor, downloader, importer,
                 detector=None, cancel_event: Optional[threading.Event] = None,
                 logger: Optional[logging.Logger] = None):
        """Initialize restore orchestrator.

        Args:
            settings: Resolved restore settings.
            executor: Remote command executor for the target pod.
            downloader: Artifact downloader.
            importer: Batch importer for discovered tsfiles.
            detector: Timestamp detector used when a job has no timestamp.
            cancel_event: Event shared with the executor and importer.
            logger: Logger to use.
        """
        self.settings = settings
        self.executor = executor
        self.downloader = downloader
        self.importer = importer
        self.detector = detector
        self.cancel_event = cancel_event or threading.Event()
        self.logger = logger or logging.getLogger(__name__)
        self.phase = RestorePhase.IDLE

    @classmethod
    def from_settings(cls, settings: RestoreSettings, core_api=None,
                      cancel_event: Optional[threading.Event] = None,
                      logger: Optional[logging.Logger] = None) -> "RestoreOrchestrator":
        """Wire every component from resolved settings."""
        logger = logger or logging.getLogger(__name__)
        cancel_event = cancel_event or threading.Event()
        if core_api is None:
            core_api = load_kube_client(settings.kubeconfig, settings.context, logger=logger)

        executor = PodExecutor(
            core_api,
            namespace=settings.namespace,
            pod_name=settings.pod_name,
            container=settings.container,
            timeout_seconds=settings.exec_timeout_seconds,
            cancel_event=cancel_event,
            logger=logger,
        )
        downloader = build_downloader(settings, logger=logger)

        if settings.classifier == "exit_status":
            classifier = ExitStatusClassifier()
        else:
            classifier = SuccessMarkerClassifier(settings.success_markers)

        importer = BatchImporter(
            executor,
            cli_path=settings.cli_path,
            host=settings.host,
            batch_size=settings.batch_size,
            concurrency=settings.concurrency,
            batch_pause=settings.batch_pause,
            batch_delay=settings.batch_delay,
            classifier=classifier,
            log_memory=settings.log_memory,
            cancel_event=cancel_event,
            logger=logger,
        )

        return cls(settings, executor, downloader, importer,
                   detector=build_detector(settings, downloader, logger=logger),
                   cancel_event=cancel_event, logger=logger)

    def cancel(self) -> None:
        """Abort in-flight commands and skip the remaining imports."""
        self.logger.warning("Cancellation requested")
        self.cancel_event.set()

    def restore(self, job: RestoreJob) -> RestoreResult:
        """Run the whole pipeline for one job.

        Returns:
            The result. ``result.error`` is set when a fatal phase failed.
        """
        self.phase = RestorePhase.IDLE
        result = RestoreResult(start_time=datetime.now(), timestamp=job.timestamp or "",
                               dry_run=job.dry_run)

        self.logger.info(f"Starting restore of {self.settings.namespace}/{self.settings.pod_name} "
                         f"(timestamp={job.timestamp or 'auto'}, dry_run={job.dry_run}, "
                         f"skip_delete={job.skip_delete})")

        if job.dry_run:
            if job.timestamp:
                result.backup_file = build_backup_filename(self.settings.pod_name, job.timestamp)
            self.logger.info("Dry run: no download, extraction or import will be performed")
            self._enter(RestorePhase.DONE)
            return self._finish(result)

        try:
            self._enter(RestorePhase.DOWNLOADING)
            timestamp = self._resolve_timestamp(job)
            result.timestamp = timestamp
            artifact = self._build_artifact(timestamp)
            result.backup_file = artifact.filename
            self._stage_artifact(artifact)

            self._enter(RestorePhase.EXTRACTING)
            self._preserve_previous_data()
            self._extract(artifact)

            if not job.skip_delete:
                self._enter(RestorePhase.DELETING)
                self._delete_databases()

            self._enter(RestorePhase.DISCOVERING)
            files = self._discover_files()
        except RestoreError as e:
            return self._fail(result, e)

        self._enter(RestorePhase.IMPORTING)
        import_result = self.importer.import_files(files)
        result.total_files = import_result.total_files
        result.success_count = import_result.success_count
        result.failed_count = import_result.failed_count

        self._enter(RestorePhase.CLEANING)
        self._cleanup(artifact)

        self._enter(RestorePhase.DONE)
        self._finish(result)
        self.logger.info(f"Restore finished: {result.total_files} files, "
                         f"{result.success_count} ok, {result.failed_count} failed "
                         f"in {result.duration}")
        return result

    def _enter(self, phase: RestorePhase) -> None:
        self.logger.debug(f"Phase {self.phase.value} -> {phase.value}")
        self.phase = phase

    def _fail(self, result: RestoreResult, error: RestoreError) -> RestoreResult:
        self.logger.error(f"Restore failed during {self.phase.value}: {error}")
        result.error = error
        result.failed_phase = self.phase
        self._enter(RestorePhase.FAILED)
        return self._finish(result)

    @staticmethod
    def _finish(result: RestoreResult) -> RestoreResult:
        result.end_time = datetime.now()
        result.duration = result.end_time - result.start_time
        return result

    def _resolve_timestamp(self, job: RestoreJob) -> str:
        if job.timestamp:
            validate_timestamp(job.timestamp)
            return job.timestamp
        if self.detector is None:
            raise NotFoundError("No timestamp given and auto-detection is disabled")
        return self.detector.detect()

    def _build_artifact(self, timestamp: str) -> BackupArtifact:
        filename = build_backup_filename(self.settings.pod_name, timestamp)
        return BackupArtifact(
            filename=filename,
            url=build_backup_url(self.settings.base_url, self.settings.pod_name, timestamp),
            remote_path=posixpath.join(self.settings.download_dir, filename),
            local_path=os.path.join(self.settings.local_dir, filename),
        )

    def _stage_artifact(self, artifact: BackupArtifact) -> None:
        self.logger.info(f"Step 1: staging backup {artifact.filename}")

        if self.executor.file_exists(artifact.remote_path):
            self.logger.info(f"Backup already present in pod at {artifact.remote_path}, "
                             f"skipping download")
            return

        if self.settings.download_mode == "remote":
            self._fetch_in_pod(artifact)
        else:
            local_file = self.downloader.download(artifact.url, artifact.local_path)
            artifact.size = self.executor.upload(str(local_file), artifact.remote_path)

        self.logger.info(f"Backup staged at {artifact.remote_path}")

    def _fetch_in_pod(self, artifact: BackupArtifact) -> None:
        self.logger.info(f"Downloading {artifact.url} inside the pod")
        try:
            self.executor.execute(f"wget -q -O '{artifact.remote_path}' '{artifact.url}'")
        except RestoreError:
            self._best_effort(f"rm -f '{artifact.remote_path}'", "remove partial download")
            raise

    def _preserve_previous_data(self) -> None:
        data_dir = self.settings.data_dir
        command = (
            f"[ -d '{data_dir}/backup_before_restore' ] && "
            f"mv '{data_dir}/backup_before_restore' "
            f"'{data_dir}/backup_before_restore_old_'$(date +%s) || true"
        )
        self._best_effort(command, "set aside previous backup_before_restore directory")

    def _extract(self, artifact: BackupArtifact) -> None:
        self.logger.info(f"Step 2: extracting {artifact.filename} into {self.settings.data_dir}")
        output = self.executor.execute(
            f"tar --overwrite -xzf '{artifact.remote_path}' -C '{self.settings.data_dir}/'"
        )
        if output.stdout.strip():
            self.logger.debug(f"tar output: {output.stdout.strip()}")

        try:
            listing = self.executor.execute(
                f"find '{self.settings.data_dir}' -type f | head -{LISTING_PREVIEW_LINES}"
            )
            self.logger.info(f"Extracted files (first {LISTING_PREVIEW_LINES}):\n{listing.stdout.rstrip()}")
        except RestoreError as e:
            self.logger.debug(f"Could not list extracted files: {e}")

    def _delete_databases(self) -> None:
        self.logger.info("Step 3: deleting existing databases")
        cli, host = self.settings.cli_path, self.settings.host

        for database in self.settings.databases:
            command = (f"{cli} -h {host} -e \"delete database {database}\" 2>/dev/null "
                       f"|| echo 'Database {database} does not exist'")
            if self._best_effort(command, f"delete database {database}"):
                self.logger.info(f"Deleted database {database}")

        self._best_effort(f"{cli} -h {host} -e \"flush\"", "flush")

    def _discover_files(self) -> List[str]:
        root = posixpath.join(self.settings.data_dir, self.settings.tsfile_subdir)
        self.logger.info(f"Step 4: discovering tsfiles under {root}")

        output = self.executor.execute(f"find '{root}' -name '*.tsfile' -type f")
        files = [line.strip() for line in output.stdout.splitlines() if line.strip()]
        if not files:
            raise NotFoundError(f"No tsfiles found under {root}")

        self.logger.info(f"Found {len(files)} tsfiles")
        return files

    def _cleanup(self, artifact: BackupArtifact) -> None:
        self.logger.info("Step 5: cleaning up staged backup")
        if self._best_effort(f"rm -f '{artifact.remote_path}'", "remove staged backup"):
            self.logger.info(f"Removed {artifact.remote_path}")

        if self.settings.download_mode != "remote" and artifact.local_path:
            try:
                os.remove(artifact.local_path)
                self.logger.info(f"Removed {artifact.local_path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                self.logger.warning(f"Could not remove {artifact.local_path}: {e}")

    def _best_effort(self, command: str, description: str) -> bool:
        try:
            self.executor.execute(command)
        except RestoreError as e:
            self.logger.warning(f"Failed to {description}, continuing: {e}")
            return False
        return True
