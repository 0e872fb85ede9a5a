"""Backup timestamp detection by probing the artifact store."""

import logging
from datetime import datetime
from typing import Callable, Iterator, List, Optional

from .artifacts import build_backup_filename, build_backup_url
from .errors import NotFoundError, RestoreError

SECOND_WINDOW = range(1, 11)


class HourlyWindowStrategy:
    """Candidates at a fixed minute of the current hour, seconds 01 to 10.

    The backup job starts at ``minute`` past every hour and the archive name
    carries the second it was written, which is not known in advance.
    """

    def __init__(self, minute: int = 35, seconds=SECOND_WINDOW):
        self.minute = minute
        self.seconds = seconds

    def candidates(self, now: datetime) -> Iterator[str]:
        prefix = now.strftime('%Y%m%d%H') + f"{self.minute:02d}"
        for second in self.seconds:
            yield f"{prefix}{second:02d}"

    def describe(self, now: datetime) -> str:
        prefix = now.strftime('%Y%m%d%H') + f"{self.minute:02d}"
        return f"{prefix}{self.seconds[0]:02d}-{prefix}{self.seconds[-1]:02d}"


class PatternStrategy:
    """Candidates from a user pattern.

    ``{hour}`` expands to the current ``YYYYMMDDHH``. A ``*`` is replaced by
    each second from 01 to 10; a pattern without ``*`` is a single candidate.
    """

    def __init__(self, pattern: str, seconds=SECOND_WINDOW):
        self.pattern = pattern
        self.seconds = seconds

    def candidates(self, now: datetime) -> Iterator[str]:
        expanded = self.pattern.replace("{hour}", now.strftime('%Y%m%d%H'))
        if "*" not in expanded:
            yield expanded
            return
        for second in self.seconds:
            yield expanded.replace("*", f"{second:02d}")

    def describe(self, now: datetime) -> str:
        return self.pattern.replace("{hour}", now.strftime('%Y%m%d%H'))


class TimestampDetector:
    """Finds the timestamp of the latest backup for a pod.

    Candidates are probed in the order the strategy yields them and the first
    one that exists wins.
    """

    def __init__(self, downloader, base_url: str, pod_name: str, strategy=None,
                 clock: Callable[[], datetime] = datetime.now,
                 logger: Optional[logging.Logger] = None):
        """Initialize timestamp detector.

        Args:
            downloader: Object exposing ``exists(url) -> (bool, size)``.
            base_url: Artifact store base URL.
            pod_name: Pod whose backups are searched.
            strategy: Candidate strategy. Defaults to ``HourlyWindowStrategy``.
            clock: Returns the current time.
            logger: Logger to use.
        """
        self.downloader = downloader
        self.base_url = base_url
        self.pod_name = pod_name
        self.strategy = strategy or HourlyWindowStrategy()
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def detect(self) -> str:
        """Return the first candidate timestamp whose artifact exists.

        Raises:
            NotFoundError: If no candidate exists. When probes failed, the last
                probe error is the ``__cause__``.
        """
        now = self.clock()
        self.logger.info(f"Detecting backup timestamp for {self.pod_name} at {self.base_url}")

        probe_errors: List[RestoreError] = []
        for timestamp in self.strategy.candidates(now):
            url = build_backup_url(self.base_url, self.pod_name, timestamp)
            try:
                exists, size = self.downloader.exists(url)
            except RestoreError as e:
                self.logger.warning(f"Probe failed for {timestamp}: {e}")
                probe_errors.append(e)
                continue

            if exists:
                self.logger.info(f"Found backup {build_backup_filename(self.pod_name, timestamp)} "
                                 f"({size} bytes)")
                return timestamp
            self.logger.debug(f"No backup at {url}")

        message = f"No backup found for {self.pod_name} (tried {self.strategy.describe(now)})"
        if probe_errors:
            raise NotFoundError(message) from probe_errors[-1]
        raise NotFoundError(message)
