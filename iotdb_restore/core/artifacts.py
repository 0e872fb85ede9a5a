"""Backup artifact naming helpers."""

import re
from datetime import datetime

from .errors import TimestampValidationError

BACKUP_PREFIX = "emsau"
BACKUP_SUFFIX = ".tar.gz"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

_FILENAME_RE = re.compile(r"emsau_\S+_(\d{14})\.tar\.gz")


def build_backup_filename(pod_name: str, timestamp: str) -> str:
    """Build the artifact filename, e.g. ``emsau_iotdb-0_20240101103501.tar.gz``."""
    return f"{BACKUP_PREFIX}_{pod_name}_{timestamp}{BACKUP_SUFFIX}"


def build_backup_url(base_url: str, pod_name: str, timestamp: str) -> str:
    """Join the artifact store base URL with the artifact filename."""
    return f"{base_url.rstrip('/')}/{build_backup_filename(pod_name, timestamp)}"


def parse_timestamp(filename: str) -> str:
    """Extract the 14-digit timestamp from an artifact filename.

    Args:
        filename: Artifact filename or URL.

    Returns:
        The timestamp string.

    Raises:
        TimestampValidationError: If the name does not follow the convention.
    """
    match = _FILENAME_RE.search(filename)
    if not match:
        raise TimestampValidationError(f"Cannot parse timestamp from filename: {filename}")
    return match.group(1)


def validate_timestamp(timestamp: str) -> None:
    """Check that a timestamp is a 14-digit ``YYYYMMDDHHMMSS`` date.

    Raises:
        TimestampValidationError: If the timestamp is malformed.
    """
    if len(timestamp) != 14:
        raise TimestampValidationError(
            f"Timestamp must be 14 digits, got {len(timestamp)}: {timestamp!r}"
        )
    if not timestamp.isdigit():
        raise TimestampValidationError(f"Timestamp must be numeric: {timestamp!r}")
    try:
        datetime.strptime(timestamp, TIMESTAMP_FORMAT)
    except ValueError as e:
        raise TimestampValidationError(f"Timestamp is not a valid date: {timestamp!r}") from e


def format_timestamp(timestamp: str) -> str:
    """Render a backup timestamp as ``YYYY-MM-DD HH:MM:SS``."""
    validate_timestamp(timestamp)
    return datetime.strptime(timestamp, TIMESTAMP_FORMAT).strftime('%Y-%m-%d %H:%M:%S')
