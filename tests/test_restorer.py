from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from iotdb_restore.core.detector import HourlyWindowStrategy, PatternStrategy, TimestampDetector
from iotdb_restore.core.downloader import HttpDownloader
from iotdb_restore.core.errors import (
    CommandError,
    DownloadError,
    NotFoundError,
    StagingError,
    TimestampValidationError,
)
from iotdb_restore.core.executor import CommandOutput
from iotdb_restore.core.importer import BatchImporter, ExitStatusClassifier, SuccessMarkerClassifier
from iotdb_restore.core.models import RestoreJob, RestorePhase
from iotdb_restore.core.restorer import RestoreOrchestrator
from tests.fakes import FakeExecutor

TIMESTAMP = "20240115103502"
FILENAME = f"emsau_iotdb-0_{TIMESTAMP}.tar.gz"
REMOTE_PATH = f"/tmp/{FILENAME}"
TSFILES = "/iotdb/data/iotdb/data/datanode/seq/1.tsfile\n/iotdb/data/iotdb/data/datanode/seq/2.tsfile\n"


def discovery(stdout=TSFILES):
    return {"-name '*.tsfile'": CommandOutput(stdout=stdout, stderr="", exit_code=0)}


def make_orchestrator(settings, executor, downloader=None, detector=None):
    importer = BatchImporter(executor, cli_path=settings.cli_path, host=settings.host,
                             batch_size=settings.batch_size, batch_delay=0)
    return RestoreOrchestrator(settings, executor, downloader or MagicMock(), importer,
                               detector=detector)


@pytest.fixture()
def remote_settings(settings):
    return replace(settings, download_mode="remote")


def index_of(executor, needle):
    for index, command in enumerate(executor.commands):
        if needle in command:
            return index
    raise AssertionError(f"no command containing {needle!r}")


def test_dry_run_touches_nothing(settings):
    executor = FakeExecutor()
    downloader = MagicMock()
    orchestrator = make_orchestrator(settings, executor, downloader)

    result = orchestrator.restore(RestoreJob(timestamp=TIMESTAMP, dry_run=True))

    assert executor.commands == []
    assert downloader.method_calls == []
    assert result.dry_run
    assert result.error is None
    assert (result.total_files, result.success_count, result.failed_count) == (0, 0, 0)
    assert result.backup_file == FILENAME
    assert orchestrator.phase is RestorePhase.DONE


def test_remote_mode_runs_steps_in_order(remote_settings):
    executor = FakeExecutor(discovery())
    orchestrator = make_orchestrator(remote_settings, executor)

    result = orchestrator.restore(RestoreJob(timestamp=TIMESTAMP))

    assert result.error is None
    assert result.backup_file == FILENAME
    assert (result.total_files, result.success_count, result.failed_count) == (2, 2, 0)
    assert orchestrator.phase is RestorePhase.DONE

    order = [
        index_of(executor, f"wget -q -O '{REMOTE_PATH}' 'http://backups.local/iotdb/{FILENAME}'"),
        index_of(executor, "backup_before_restore"),
        index_of(executor, f"tar --overwrite -xzf '{REMOTE_PATH}' -C '/iotdb/data/'"),
        index_of(executor, 'delete database root.emsplus'),
        index_of(executor, 'delete database root.energy'),
        index_of(executor, '-e "flush"'),
        index_of(executor, "find '/iotdb/data/iotdb/data/datanode' -name '*.tsfile' -type f"),
        index_of(executor, "load '/iotdb/data/iotdb/data/datanode/seq/1.tsfile' verify=false"),
        index_of(executor, f"rm -f '{REMOTE_PATH}'"),
    ]
    assert order == sorted(order)


def test_local_mode_downloads_and_uploads(settings, tmp_path):
    local_file = tmp_path / "staging" / FILENAME
    local_file.parent.mkdir(parents=True)
    local_file.write_bytes(b"archive")
    downloader = MagicMock()
    downloader.download.return_value = local_file
    executor = FakeExecutor(discovery())

    result = make_orchestrator(settings, executor, downloader).restore(RestoreJob(timestamp=TIMESTAMP))

    assert result.error is None
    downloader.download.assert_called_once_with(
        f"http://backups.local/iotdb/{FILENAME}", str(local_file)
    )
    assert executor.uploads == [(str(local_file), REMOTE_PATH)]
    assert executor.commands_containing("wget") == []
    assert not local_file.exists()


def test_staged_archive_is_reused(remote_settings):
    executor = FakeExecutor(discovery(), existing={REMOTE_PATH})

    result = make_orchestrator(remote_settings, executor).restore(RestoreJob(timestamp=TIMESTAMP))

    assert result.error is None
    assert executor.commands_containing("wget") == []


def test_download_failure_is_fatal(settings):
    downloader = MagicMock()
    downloader.download.side_effect = DownloadError("gave up", attempts=3)
    executor = FakeExecutor(discovery())

    result = make_orchestrator(settings, executor, downloader).restore(RestoreJob(timestamp=TIMESTAMP))

    assert isinstance(result.error, DownloadError)
    assert result.failed_phase is RestorePhase.DOWNLOADING
    assert executor.commands_containing("tar ") == []


def test_unusable_local_staging_dir_is_fatal(settings, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("regular file")
    session = MagicMock()
    downloader = HttpDownloader(retry_delay_seconds=0, session=session)
    executor = FakeExecutor(discovery())
    staged = replace(settings, local_dir=str(blocker / "staging"))

    result = make_orchestrator(staged, executor, downloader).restore(RestoreJob(timestamp=TIMESTAMP))

    assert isinstance(result.error, StagingError)
    assert result.failed_phase is RestorePhase.DOWNLOADING
    session.get.assert_not_called()
    assert executor.uploads == []


def test_remote_fetch_failure_removes_partial_file(remote_settings):
    executor = FakeExecutor({"wget": CommandError("wget: server returned error 404", exit_code=8)})

    result = make_orchestrator(remote_settings, executor).restore(RestoreJob(timestamp=TIMESTAMP))

    assert isinstance(result.error, CommandError)
    assert result.failed_phase is RestorePhase.DOWNLOADING
    assert executor.commands_containing(f"rm -f '{REMOTE_PATH}'")


def test_extraction_failure_is_fatal(remote_settings):
    responses = {"tar --overwrite": CommandError("tar: Unexpected EOF", exit_code=2)}
    responses.update(discovery())
    executor = FakeExecutor(responses)
    orchestrator = make_orchestrator(remote_settings, executor)

    result = orchestrator.restore(RestoreJob(timestamp=TIMESTAMP))

    assert isinstance(result.error, CommandError)
    assert result.failed_phase is RestorePhase.EXTRACTING
    assert orchestrator.phase is RestorePhase.FAILED
    assert executor.commands_containing("load '") == []
    assert result.end_time is not None


def test_delete_failures_are_ignored(remote_settings):
    responses = {"delete database": CommandError("connection refused", exit_code=1),
                 '-e "flush"': CommandError("connection refused", exit_code=1)}
    responses.update(discovery())
    executor = FakeExecutor(responses)

    result = make_orchestrator(remote_settings, executor).restore(RestoreJob(timestamp=TIMESTAMP))

    assert result.error is None
    assert result.success_count == 2


def test_preserve_failure_is_ignored(remote_settings):
    responses = {"backup_before_restore": CommandError("mv failed", exit_code=1)}
    responses.update(discovery())

    result = make_orchestrator(remote_settings, FakeExecutor(responses)).restore(
        RestoreJob(timestamp=TIMESTAMP))

    assert result.error is None


def test_skip_delete(remote_settings):
    executor = FakeExecutor(discovery())

    result = make_orchestrator(remote_settings, executor).restore(
        RestoreJob(timestamp=TIMESTAMP, skip_delete=True))

    assert result.error is None
    assert executor.commands_containing("delete database") == []
    assert executor.commands_containing("flush") == []


def test_no_tsfiles_is_fatal(remote_settings):
    executor = FakeExecutor(discovery(stdout="\n"))

    result = make_orchestrator(remote_settings, executor).restore(RestoreJob(timestamp=TIMESTAMP))

    assert isinstance(result.error, NotFoundError)
    assert result.failed_phase is RestorePhase.DISCOVERING


def test_import_failures_do_not_fail_the_restore(remote_settings):
    responses = {"seq/2.tsfile": CommandError("load failed", exit_code=1)}
    responses.update(discovery())
    executor = FakeExecutor(responses)

    result = make_orchestrator(remote_settings, executor).restore(RestoreJob(timestamp=TIMESTAMP))

    assert result.error is None
    assert (result.total_files, result.success_count, result.failed_count) == (2, 1, 1)
    assert executor.commands_containing(f"rm -f '{REMOTE_PATH}'")


def test_detects_timestamp_when_missing(remote_settings):
    detector = MagicMock()
    detector.detect.return_value = TIMESTAMP
    executor = FakeExecutor(discovery())

    result = make_orchestrator(remote_settings, executor, detector=detector).restore(RestoreJob())

    detector.detect.assert_called_once_with()
    assert result.timestamp == TIMESTAMP
    assert result.backup_file == FILENAME


def test_missing_timestamp_without_detector(remote_settings):
    result = make_orchestrator(remote_settings, FakeExecutor()).restore(RestoreJob())

    assert isinstance(result.error, NotFoundError)
    assert result.failed_phase is RestorePhase.DOWNLOADING


def test_invalid_timestamp(remote_settings):
    executor = FakeExecutor()

    result = make_orchestrator(remote_settings, executor).restore(RestoreJob(timestamp="2024-01-15"))

    assert isinstance(result.error, TimestampValidationError)
    assert executor.commands == []


def test_cancel_sets_shared_event(remote_settings):
    orchestrator = make_orchestrator(remote_settings, FakeExecutor())

    orchestrator.cancel()

    assert orchestrator.cancel_event.is_set()


def test_from_settings_wires_components(settings):
    orchestrator = RestoreOrchestrator.from_settings(
        replace(settings, timestamp_pattern="{hour}35*", classifier="exit_status"),
        core_api=MagicMock(),
    )

    assert isinstance(orchestrator.detector, TimestampDetector)
    assert isinstance(orchestrator.detector.strategy, PatternStrategy)
    assert isinstance(orchestrator.importer.classifier, ExitStatusClassifier)
    assert orchestrator.importer.cancel_event is orchestrator.cancel_event
    assert orchestrator.executor.cancel_event is orchestrator.cancel_event


def test_from_settings_defaults(settings):
    orchestrator = RestoreOrchestrator.from_settings(settings, core_api=MagicMock())

    assert isinstance(orchestrator.detector.strategy, HourlyWindowStrategy)
    assert isinstance(orchestrator.importer.classifier, SuccessMarkerClassifier)


def test_from_settings_without_detection(settings):
    orchestrator = RestoreOrchestrator.from_settings(
        replace(settings, auto_detect_timestamp=False), core_api=MagicMock())

    assert orchestrator.detector is None
