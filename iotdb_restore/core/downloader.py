"""HTTP artifact downloader with retry."""

import logging
import os
import time
from pathlib import Path
from typing import Optional, Tuple

import requests
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..utils.formatters import format_file_size
from .errors import (
    DownloadError,
    OperationTimeoutError,
    RemoteConnectionError,
    RestoreError,
    StagingError,
    UnexpectedStatusError,
)

CHUNK_SIZE = 1024 * 1024
PROGRESS_INTERVAL_SECONDS = 5


class ProgressTracker:
    """Logs percentage and throughput while a download is copied to disk."""

    def __init__(self, url: str, total: Optional[int], logger: logging.Logger,
                 interval_seconds: float = PROGRESS_INTERVAL_SECONDS):
        self.url = url
        self.total = total if total and total > 0 else None
        self.logger = logger
        self.interval_seconds = interval_seconds
        self.written = 0
        self.start_time = time.monotonic()
        self._last_log = self.start_time
        self._last_decile = 0

    @property
    def percent(self) -> Optional[float]:
        if not self.total:
            return None
        return self.written / self.total * 100

    def update(self, count: int) -> None:
        self.written += count
        now = time.monotonic()

        decile = int(self.percent // 10) if self.percent is not None else 0
        if now - self._last_log >= self.interval_seconds or decile > self._last_decile:
            self._log(now)
            self._last_log = now
            self._last_decile = decile

    def finish(self) -> float:
        """Log the final snapshot and return elapsed seconds."""
        elapsed = time.monotonic() - self.start_time
        self.logger.info(
            f"Downloaded {format_file_size(self.written)} from {self.url} in {elapsed:.1f}s"
        )
        return elapsed

    def _log(self, now: float) -> None:
        elapsed = max(now - self.start_time, 1e-6)
        speed = self.written / elapsed / (1024 * 1024)
        total = format_file_size(self.total) if self.total else "unknown"
        percent = f"{self.percent:.1f}%" if self.percent is not None else "?"
        self.logger.info(
            f"Download progress: {percent} ({format_file_size(self.written)} / {total}, "
            f"{speed:.2f} MB/s)"
        )


class HttpDownloader:
    """Fetches backup archives from an HTTP artifact store."""

    def __init__(self, max_retries: int = 3, retry_delay_seconds: float = 5,
                 timeout_seconds: float = 30 * 60,
                 session: Optional[requests.Session] = None,
                 logger: Optional[logging.Logger] = None):
        """Initialize downloader.

        Args:
            max_retries: Total number of download attempts.
            retry_delay_seconds: Fixed pause between attempts.
            timeout_seconds: Connect/read timeout for each request.
            session: Optional requests session to reuse.
            logger: Logger to use.
        """
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def download(self, url: str, dest_path: str) -> Path:
        """Download ``url`` into ``dest_path``.

        An existing file at ``dest_path`` is trusted as-is and no request is
        made. Each failed attempt removes its partial file before the next one.

        Returns:
            Path to the downloaded file.

        Raises:
            DownloadError: If every attempt failed.
            StagingError: If the local staging path cannot be prepared.
        """
        dest = Path(dest_path)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            existing_size = dest.stat().st_size if dest.exists() else None
        except OSError as e:
            raise StagingError(f"Cannot prepare staging path {dest}: {e}") from e

        if existing_size is not None:
            self.logger.info(f"File already exists, skipping download: {dest} "
                             f"({format_file_size(existing_size)})")
            return dest

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_fixed(self.retry_delay_seconds),
            retry=retry_if_exception_type((RestoreError, OSError)),
            before_sleep=self._log_retry,
        )

        try:
            retrying(self._attempt_download, url, dest)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise DownloadError(
                f"Download of {url} failed after {self.max_retries} attempts: {last_error}",
                attempts=e.last_attempt.attempt_number,
            ) from last_error

        return dest

    def exists(self, url: str) -> Tuple[bool, int]:
        """Probe an artifact without downloading it.

        Returns:
            ``(True, size)`` on 200 and ``(False, 0)`` on 404.

        Raises:
            UnexpectedStatusError: For any other status.
            RemoteConnectionError: On transport failure.
            OperationTimeoutError: If the probe times out.
        """
        try:
            response = self.session.head(url, timeout=self.timeout_seconds, allow_redirects=True)
        except requests.Timeout as e:
            raise OperationTimeoutError(f"HEAD {url} timed out") from e
        except requests.RequestException as e:
            raise RemoteConnectionError(f"HEAD {url} failed: {e}") from e

        with response:
            if response.status_code == 200:
                try:
                    size = int(response.headers.get('Content-Length', 0))
                except ValueError:
                    size = 0
                return True, size
            if response.status_code == 404:
                return False, 0
            raise UnexpectedStatusError(url, response.status_code)

    def _attempt_download(self, url: str, dest: Path) -> None:
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout_seconds)
        except requests.Timeout as e:
            raise OperationTimeoutError(f"GET {url} timed out") from e
        except requests.RequestException as e:
            raise RemoteConnectionError(f"GET {url} failed: {e}") from e

        with response:
            if response.status_code != 200:
                raise UnexpectedStatusError(url, response.status_code)

            total = response.headers.get('Content-Length')
            total = int(total) if total and total.isdigit() else None
            self.logger.info(f"Starting download: {url} -> {dest} "
                             f"({format_file_size(total) if total else 'unknown size'})")

            progress = ProgressTracker(url, total, self.logger)
            try:
                with open(dest, 'wb') as fh:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            fh.write(chunk)
                            progress.update(len(chunk))
            except (requests.RequestException, OSError) as e:
                self._remove_partial(dest)
                raise RemoteConnectionError(f"Copying {url} to {dest} failed: {e}") from e

        if total is not None and progress.written != total:
            self._remove_partial(dest)
            raise RemoteConnectionError(
                f"Incomplete download of {url}: got {progress.written} of {total} bytes"
            )

        progress.finish()

    def _remove_partial(self, dest: Path) -> None:
        try:
            os.remove(dest)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove partial download {dest}: {e}")

    def _log_retry(self, retry_state) -> None:
        self.logger.warning(
            f"Download attempt {retry_state.attempt_number}/{self.max_retries} failed: "
            f"{retry_state.outcome.exception()}; retrying in {self.retry_delay_seconds}s"
        )
