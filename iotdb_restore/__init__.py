"""
IoTDB Restore - restore IoTDB backups into a Kubernetes pod.

This package downloads a backup archive, unpacks it inside the target pod and
loads the contained tsfiles through the IoTDB CLI in concurrent batches.
"""

__version__ = "1.0.0"
__author__ = "Your Name"
__email__ = "your.email@example.com"

from .core.restorer import RestoreOrchestrator
from .core.importer import BatchImporter
from .reporters.webhook_reporter import WebhookReporter

__all__ = ["RestoreOrchestrator", "BatchImporter", "WebhookReporter"]
