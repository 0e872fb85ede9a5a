"""Core restore functionality."""

from .restorer import RestoreOrchestrator
from .importer import BatchImporter, SuccessMarkerClassifier, ExitStatusClassifier
from .executor import PodExecutor, CommandOutput
from .downloader import HttpDownloader
from .detector import TimestampDetector, HourlyWindowStrategy, PatternStrategy
from .models import (
    Batch,
    BackupArtifact,
    ImportOutcome,
    ImportResult,
    RestoreJob,
    RestorePhase,
    RestoreResult,
    RestoreSettings,
)

__all__ = [
    "RestoreOrchestrator",
    "BatchImporter",
    "SuccessMarkerClassifier",
    "ExitStatusClassifier",
    "PodExecutor",
    "CommandOutput",
    "HttpDownloader",
    "TimestampDetector",
    "HourlyWindowStrategy",
    "PatternStrategy",
    "Batch",
    "BackupArtifact",
    "ImportOutcome",
    "ImportResult",
    "RestoreJob",
    "RestorePhase",
    "RestoreResult",
    "RestoreSettings",
]
