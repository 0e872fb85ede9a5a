"""Result reporters."""

from .webhook_reporter import WebhookReporter

__all__ = ["WebhookReporter"]
