from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
import requests

from iotdb_restore.core.errors import CommandError
from iotdb_restore.core.models import RestorePhase, RestoreResult
from iotdb_restore.reporters.webhook_reporter import WebhookReporter

WEBHOOK_URL = "https://qyapi.weixin.qq.com/cgi-bin/webhook/send?key=test"


@pytest.fixture()
def session():
    session = MagicMock()
    response = MagicMock(status_code=200)
    response.json.return_value = {"errcode": 0, "errmsg": "ok"}
    session.post.return_value = response
    return session


def make_result(**kwargs):
    start = datetime(2024, 1, 15, 10, 40, 0)
    defaults = dict(start_time=start, end_time=start + timedelta(minutes=12, seconds=5),
                    duration=timedelta(minutes=12, seconds=5), total_files=7, success_count=6,
                    failed_count=1, backup_file="emsau_iotdb-0_20240115103502.tar.gz")
    defaults.update(kwargs)
    return RestoreResult(**defaults)


def test_message_for_completed_restore():
    message = WebhookReporter(WEBHOOK_URL, environment="prod").build_message(make_result())

    assert "## IoTDB Restore Report" in message
    assert "prod" in message
    assert "emsau_iotdb-0_20240115103502.tar.gz" in message
    assert "| **Imported** | 6 |" in message
    assert "| **Failed** | 1 |" in message
    assert "12m 5s" in message
    assert "Restore completed" in message


def test_message_for_failed_restore():
    result = make_result(error=CommandError("tar: Unexpected EOF"), failed_phase=RestorePhase.EXTRACTING)

    message = WebhookReporter(WEBHOOK_URL).build_message(result)

    assert "Restore failed" in message
    assert "Phase: extracting" in message
    assert "tar: Unexpected EOF" in message


def test_message_for_dry_run():
    message = WebhookReporter(WEBHOOK_URL).build_message(make_result(dry_run=True))

    assert "Dry run" in message


def test_send_report_posts_markdown(session):
    reporter = WebhookReporter(WEBHOOK_URL, environment="prod", session=session)

    assert reporter.send_report(make_result()) is True

    url = session.post.call_args.args[0]
    payload = session.post.call_args.kwargs["json"]
    assert url == WEBHOOK_URL
    assert payload["msgtype"] == "markdown"
    assert "IoTDB Restore Report" in payload["markdown"]["content"]


def test_disabled_reporter_sends_nothing(session):
    reporter = WebhookReporter(WEBHOOK_URL, enabled=False, session=session)

    assert reporter.send_report(make_result()) is False
    session.post.assert_not_called()


def test_api_error_code_is_a_failure(session):
    session.post.return_value.json.return_value = {"errcode": 93000, "errmsg": "invalid webhook url"}

    assert WebhookReporter(WEBHOOK_URL, session=session).send_report(make_result()) is False


def test_http_error_is_a_failure(session):
    session.post.return_value.status_code = 502

    assert WebhookReporter(WEBHOOK_URL, session=session).send_test_message() is False


def test_transport_error_is_a_failure(session):
    session.post.side_effect = requests.ConnectionError("refused")

    assert WebhookReporter(WEBHOOK_URL, session=session).send_test_message() is False


def test_validate_configuration():
    assert WebhookReporter(WEBHOOK_URL, environment="prod").validate_configuration() == []

    errors = WebhookReporter("not-a-url").validate_configuration()
    assert any("Invalid webhook URL" in error for error in errors)
    assert any("Environment" in error for error in errors)
    assert "Webhook URL not configured" in WebhookReporter().validate_configuration()
