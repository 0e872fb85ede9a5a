"""Data models for the restore pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Tuple


class RestorePhase(Enum):
    """Phases of one restore run."""
    IDLE = "idle"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    DELETING = "deleting"
    DISCOVERING = "discovering"
    IMPORTING = "importing"
    CLEANING = "cleaning"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RestoreJob:
    """One restore request."""
    timestamp: Optional[str] = None
    dry_run: bool = False
    skip_delete: bool = False


@dataclass
class BackupArtifact:
    """A backup archive staged for one restore."""
    filename: str
    url: str
    remote_path: str
    local_path: Optional[str] = None
    size: Optional[int] = None


@dataclass
class Batch:
    """A contiguous slice of the file manifest imported as one unit."""
    number: int
    files: Tuple[str, ...]
    success: int = 0
    failed: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def processed(self) -> int:
        return self.success + self.failed


@dataclass
class ImportOutcome:
    """Result of loading a single file."""
    path: str
    success: bool
    error: Optional[Exception] = None


@dataclass
class ImportResult:
    """Aggregate result of importing a whole manifest."""
    total_files: int
    success_count: int
    failed_count: int
    duration: timedelta
    batches: List[Batch] = field(default_factory=list)


@dataclass
class RestoreResult:
    """Outcome of one restore run, handed to the notifier."""
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: timedelta = timedelta(0)
    total_files: int = 0
    success_count: int = 0
    failed_count: int = 0
    backup_file: str = ""
    timestamp: str = ""
    error: Optional[Exception] = None
    failed_phase: Optional[RestorePhase] = None
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RestoreSettings:
    """Resolved configuration consumed by the restore core."""
    namespace: str
    pod_name: str
    base_url: str
    kubeconfig: str = ""
    context: str = ""
    container: str = ""
    exec_timeout_seconds: float = 1800
    data_dir: str = "/iotdb/data"
    cli_path: str = "/iotdb/sbin/start-cli.sh"
    host: str = "iotdb-datanode"
    tsfile_subdir: str = "iotdb/data/datanode"
    databases: Tuple[str, ...] = ("root.emsplus", "root.energy")
    download_dir: str = "/tmp"
    local_dir: str = "/tmp/iotdb-restore"
    download_mode: str = "local"
    auto_detect_timestamp: bool = True
    timestamp_pattern: str = ""
    retry_count: int = 3
    retry_delay_seconds: float = 5
    http_timeout_seconds: float = 1800
    concurrency: int = 1
    batch_size: int = 3
    batch_pause: bool = True
    batch_delay: float = 3
    log_memory: bool = False
    classifier: str = "marker"
    success_markers: Tuple[str, ...] = ("success",)
