"""Tests for CSV loading and export."""

from __future__ import annotations

import csv

import pytest

from conftest import T0
from fieldtrack.csv_io import EVENT_FIELDS, load_position_samples, load_status_log, write_events_csv
from fieldtrack.models import LocationEvent, LocationEventType, LocationSource, TaskStatus


def _write(path, text: str):
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadPositionSamples:
    def test_parses_columns(self, tmp_path):
        p = _write(
            tmp_path / "positions.csv",
            "userId,geoTime,latitude,longitude,speed,horizontalAccuracy,source,batteryLevel,isMock,taskId\n"
            f"w1,{T0},31.23,121.47,1.2,5.0,network,88,1,t9\n",
        )
        samples, summary = load_position_samples(p)
        assert summary.rows_parsed == 1
        s = samples[0]
        assert (s.user_id, s.captured_at_ms, s.latitude, s.longitude) == ("w1", T0, 31.23, 121.47)
        assert s.source is LocationSource.NETWORK
        assert s.speed_mps == 1.2
        assert s.battery_level == 88
        assert s.is_mock is True
        assert s.task_id == "t9"

    def test_optional_columns_default(self, tmp_path):
        p = _write(tmp_path / "positions.csv", "latitude,longitude,geoTime\n31.0,121.0,\n")
        samples, _ = load_position_samples(p, default_user="solo")
        s = samples[0]
        assert s.user_id == "solo"
        assert s.captured_at_ms is None
        assert s.source is LocationSource.GPS
        assert s.is_mock is False

    def test_bad_rows_are_skipped(self, tmp_path):
        p = _write(
            tmp_path / "positions.csv",
            "latitude,longitude,geoTime\n31.0,121.0,1\nnot-a-number,121.0,2\n31.0,121.0,3\n",
        )
        samples, summary = load_position_samples(p)
        assert [s.captured_at_ms for s in samples] == [1, 3]
        assert (summary.rows_total, summary.rows_skipped) == (3, 1)

    def test_missing_coordinate_columns(self, tmp_path):
        p = _write(tmp_path / "positions.csv", "lat,lon\n1,2\n")
        with pytest.raises(KeyError):
            load_position_samples(p)


class TestLoadStatusLog:
    def test_epoch_and_local_times(self, tmp_path):
        p = _write(
            tmp_path / "status.csv",
            "taskId,status,time,userId\n"
            f"t1,In Progress,{T0},u1\n"
            "t1,Completed,2025-01-01 09:00:00,\n",
        )
        changes, summary = load_status_log(p, "Asia/Shanghai")
        assert summary.rows_parsed == 2
        assert changes[0].status is TaskStatus.IN_PROGRESS
        assert changes[0].user_id == "u1"
        # 09:00 in Shanghai is 01:00 UTC
        assert changes[1].at_ms == T0 + 3_600_000
        assert changes[1].user_id is None

    def test_unknown_status_skipped(self, tmp_path):
        p = _write(tmp_path / "status.csv", f"taskId,status,time\nt1,Sleeping,{T0}\n")
        changes, summary = load_status_log(p, "UTC")
        assert changes == []
        assert summary.rows_skipped == 1


def test_write_events_csv(tmp_path):
    event = LocationEvent(
        event_id="e1",
        task_id="t1",
        user_id="u1",
        event_type=LocationEventType.DEPARTURE,
        latitude=31.0,
        longitude=121.0,
        at_ms=T0,
        constraint_id="c1",
    )
    out = tmp_path / "events.csv"
    assert write_events_csv([event], out, "Asia/Shanghai") == 1
    with out.open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert list(rows[0]) == list(EVENT_FIELDS)
    assert rows[0]["event_type"] == "departure"
    assert rows[0]["time_local"] == "2025-01-01 08:00:00+08:00"
    assert rows[0]["geofence_id"] == ""
