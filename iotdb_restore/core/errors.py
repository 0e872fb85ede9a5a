"""Exception hierarchy for the restore pipeline."""

from typing import Optional


class RestoreError(Exception):
    """Base class for every error raised by the restore core."""


class RemoteConnectionError(RestoreError, ConnectionError):
    """Transport or protocol failure reaching the pod or the artifact store."""


class OperationTimeoutError(RestoreError, TimeoutError):
    """A remote command or HTTP call exceeded its deadline."""


class CommandCancelledError(RestoreError):
    """A remote command was aborted because the restore was cancelled."""


class NotFoundError(RestoreError):
    """A backup artifact, pod or container does not exist."""


class TimestampValidationError(RestoreError, ValueError):
    """A backup timestamp is malformed."""


class CommandError(RestoreError):
    """A remote command ran but reported failure."""

    def __init__(self, message: str, stdout: str = "", stderr: str = "",
                 exit_code: Optional[int] = None):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


class UnexpectedStatusError(RestoreError):
    """The artifact store answered with a status other than the expected ones."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"Unexpected HTTP status {status_code} for {url}")
        self.url = url
        self.status_code = status_code


class DownloadError(RestoreError):
    """Every download attempt failed. The last attempt's error is the ``__cause__``."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class StagingError(RestoreError):
    """Local staging I/O failed (directory creation, reading or stat of a staged file)."""
