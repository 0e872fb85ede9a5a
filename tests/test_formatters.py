from datetime import datetime, timedelta

import pytest

from iotdb_restore.utils.formatters import format_date, format_duration, format_file_size


@pytest.mark.parametrize("size,expected", [
    (0, "0 B"),
    (1023, "1023 B"),
    (1024, "1.00 KB"),
    (1536 * 1024, "1.50 MB"),
    (5 * 1024 ** 3, "5.00 GB"),
])
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


def test_format_date():
    dt = datetime(2024, 1, 15, 10, 35, 2)

    assert format_date(dt) == "2024-01-15 10:35:02"
    assert format_date(dt, short=True) == "2024-01-15 10:35"
    assert format_date(None) == "-"


@pytest.mark.parametrize("duration,expected", [
    (timedelta(seconds=42), "42s"),
    (timedelta(minutes=3, seconds=7), "3m 7s"),
    (timedelta(hours=2, minutes=0, seconds=9), "2h 0m 9s"),
])
def test_format_duration(duration, expected):
    assert format_duration(duration) == expected
