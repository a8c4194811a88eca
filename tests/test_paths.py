"""Tests for path and size helpers."""

from __future__ import annotations

from datetime import datetime

import pytest

from rollrec.paths import (
    SizeParseError,
    build_attempt_paths,
    ensure_output_dir,
    format_file_size,
    parse_size,
)

MB = 1024 * 1024


class TestParseSize:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("1024", 1024 * MB),
            ("500M", 500 * MB),
            ("500mb", 500 * MB),
            ("1G", 1024 * MB),
            ("1.5GB", int(1.5 * 1024 * MB)),
            ("64k", 64 * 1024),
            ("100b", 100),
            (" 2 G ", 2 * 1024 * MB),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_size(value) == expected

    @pytest.mark.parametrize("value", ["", "big", "-5", "10T", "0", "1.2.3M"])
    def test_invalid(self, value):
        with pytest.raises(SizeParseError):
            parse_size(value)

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            parse_size("nope")


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (512, "512 bytes"),
        (1536, "1.50 KB"),
        (5 * MB, "5.00 MB"),
        (1024 * MB, "1.00 GB"),
    ],
)
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


class TestBuildAttemptPaths:
    def test_names_from_timestamp(self, tmp_path):
        paths = build_attempt_paths(tmp_path, datetime(2026, 3, 4, 5, 6, 7))

        assert paths.video == tmp_path / "2026-03-04_05-06-07.mkv"
        assert paths.log == tmp_path / "2026-03-04_05-06-07.log"

    def test_collision_gets_suffix(self, tmp_path):
        now = datetime(2026, 3, 4, 5, 6, 7)
        (tmp_path / "2026-03-04_05-06-07.mkv").write_bytes(b"")
        (tmp_path / "2026-03-04_05-06-07-1.log").write_text("")

        paths = build_attempt_paths(tmp_path, now)

        assert paths.video.name == "2026-03-04_05-06-07-2.mkv"
        assert paths.log.name == "2026-03-04_05-06-07-2.log"


def test_ensure_output_dir_creates_parents(tmp_path):
    target = tmp_path / "a" / "b"

    ensure_output_dir(target)
    ensure_output_dir(target)

    assert target.is_dir()
