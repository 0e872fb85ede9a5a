"""Webhook reporter for sending restore results to a WeChat Work group robot."""

import logging
from datetime import datetime
from typing import List, Optional

import requests

from ..core.models import RestoreResult
from ..utils.formatters import format_date, format_duration


class WebhookReporter:
    """Posts restore summaries as markdown messages to a group webhook."""

    def __init__(self, webhook_url: Optional[str] = None, environment: str = "",
                 enabled: bool = True, timeout_seconds: float = 10,
                 session: Optional[requests.Session] = None,
                 logger: Optional[logging.Logger] = None):
        """Initialize webhook reporter.

        Args:
            webhook_url: Robot webhook URL.
            environment: Environment label shown in messages.
            enabled: Whether messages are actually sent.
            timeout_seconds: HTTP timeout for one post.
            session: Optional requests session to reuse.
            logger: Logger to use.
        """
        self.webhook_url = webhook_url
        self.environment = environment
        self.enabled = enabled
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def build_message(self, result: RestoreResult) -> str:
        """Render a restore result as markdown.

        Args:
            result: Finished restore result.

        Returns:
            Markdown message body.
        """
        status = "✅" if result.succeeded else "❌"

        lines = [
            "## IoTDB Restore Report",
            "",
            f"{status} **Environment**: {self.environment or 'N/A'}",
            f"> **Backup file**: `{result.backup_file or 'N/A'}`",
            "",
            "---",
            "",
            "### 📊 Statistics",
            "",
            "| Item | Value |",
            "|------|------|",
            f"| **Start time** | {format_date(result.start_time)} |",
            f"| **End time** | {format_date(result.end_time)} |",
            f"| **Duration** | {format_duration(result.duration)} |",
            f"| **Total files** | {result.total_files} |",
            f"| **Imported** | {result.success_count} |",
            f"| **Failed** | {result.failed_count} |",
            "",
            "---",
            "",
        ]

        if result.dry_run:
            lines.append("### ℹ️ Dry run, nothing was changed")
        elif result.error is not None:
            phase = result.failed_phase.value if result.failed_phase else "unknown"
            lines.append("### ❌ Restore failed")
            lines.append("")
            lines.append(f"Phase: {phase}")
            lines.append(f"Error: {result.error}")
        else:
            lines.append("### ✅ Restore completed")

        lines.append("")
        lines.append(f"Reported at: {self._get_timestamp()}")
        return "\n".join(lines)

    def send_report(self, result: RestoreResult) -> bool:
        """Send a restore result to the webhook.

        Args:
            result: Finished restore result.

        Returns:
            True if the message was delivered.
        """
        if not self.enabled:
            self.logger.info("Webhook notification disabled, not sending report")
            return False

        return self._post_markdown(self.build_message(result))

    def send_test_message(self) -> bool:
        """Send a test message to verify configuration.

        Returns:
            True if test message sent successfully.
        """
        content = (
            "## IoTDB Restore Test Message\n\n"
            f"Environment: {self.environment or 'N/A'}\n\n"
            "If you can read this, the webhook configuration is working correctly.\n\n"
            f"Generated at: {self._get_timestamp()}"
        )
        return self._post_markdown(content)

    def validate_configuration(self) -> List[str]:
        """Validate webhook configuration.

        Returns:
            List of validation errors (empty if valid).
        """
        errors = []

        if not self.webhook_url:
            errors.append("Webhook URL not configured")
        elif not self.webhook_url.startswith(('http://', 'https://')):
            errors.append(f"Invalid webhook URL: {self.webhook_url}")

        if not self.environment:
            errors.append("Environment label not configured")

        return errors

    def _post_markdown(self, content: str) -> bool:
        if not self.webhook_url:
            self.logger.error("No webhook URL configured")
            return False

        payload = {
            "msgtype": "markdown",
            "markdown": {"content": content},
        }

        self.logger.debug(f"Posting {len(content)} characters to webhook")
        try:
            response = self.session.post(self.webhook_url, json=payload, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            self.logger.error(f"Failed to send webhook report: {e}")
            return False

        if response.status_code != 200:
            self.logger.error(f"Webhook returned HTTP {response.status_code}: {response.text[:200]}")
            return False

        # The robot API reports application errors in the body with HTTP 200
        try:
            body = response.json()
        except ValueError:
            body = {}
        if body.get('errcode', 0) != 0:
            self.logger.error(f"Webhook rejected message: {body.get('errmsg', body)}")
            return False

        self.logger.info("Webhook report sent successfully")
        return True

    def _get_timestamp(self) -> str:
        """Get current timestamp string."""
        return datetime.now().strftime('%Y-%m-%d %H:%M:%S')
