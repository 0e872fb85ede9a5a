"""Shared pytest fixtures."""

import pytest

from iotdb_restore.core.models import RestoreSettings


@pytest.fixture()
def settings(tmp_path):
    return RestoreSettings(
        namespace="iotdb",
        pod_name="iotdb-0",
        base_url="http://backups.local/iotdb/",
        local_dir=str(tmp_path / "staging"),
        batch_delay=0,
    )
