from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from iotdb_restore import cli as cli_module

CONFIG = """
kubernetes:
  namespace: iotdb
  pod_name: iotdb-0
backup:
  base_url: https://backups.example.com/iotdb
"""


@pytest.fixture()
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG, encoding="utf-8")
    return str(path)


@pytest.fixture()
def runner():
    return CliRunner()


def test_validate_config(runner, config_path):
    result = runner.invoke(cli_module.cli, ["--config", config_path, "validate-config"])

    assert result.exit_code == 0
    assert "Configuration loaded successfully" in result.output
    assert "iotdb/iotdb-0" in result.output
    assert "Notification: Not configured" in result.output


def test_validate_config_missing_file(runner, tmp_path):
    result = runner.invoke(cli_module.cli, ["--config", str(tmp_path / "missing.yaml"), "validate-config"])

    assert result.exit_code == 1


def test_restore_dry_run(runner, config_path, monkeypatch):
    core_api = MagicMock()
    core_api.read_namespaced_pod.return_value.status.phase = "Running"
    monkeypatch.setattr(cli_module, "load_kube_client", lambda *args, **kwargs: core_api)

    result = runner.invoke(cli_module.cli, ["--config", config_path, "restore",
                                            "--timestamp", "20240115103502", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "emsau_iotdb-0_20240115103502.tar.gz" in result.output
    assert "Dry run completed" in result.output
    core_api.connect_get_namespaced_pod_exec.assert_not_called()


def test_restore_reports_connection_errors(runner, config_path, monkeypatch):
    from iotdb_restore.core.errors import RemoteConnectionError

    def fail(*args, **kwargs):
        raise RemoteConnectionError("no kubeconfig")

    monkeypatch.setattr(cli_module, "load_kube_client", fail)

    result = runner.invoke(cli_module.cli, ["--config", config_path, "restore", "--dry-run"])

    assert result.exit_code == 1
