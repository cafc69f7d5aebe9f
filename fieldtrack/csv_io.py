"""CSV input/output: position samples, task status logs and location events."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from fieldtrack.models import LocationEvent, LocationSource, PositionSample, TaskStatus
from fieldtrack.timeutils import dt_from_epoch_ms, parse_epoch_ms

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "y", "t"}


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


@dataclass(frozen=True, slots=True)
class StatusChange:
    """One row of a task status log."""

    task_id: str
    status: TaskStatus
    at_ms: int
    user_id: str | None = None


def _opt_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value.strip())


def _opt_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value.strip())


def _parse_source(value: str | None) -> LocationSource:
    if value is None or not value.strip():
        return LocationSource.GPS
    return LocationSource(value.strip().lower())


def _parse_bool(value: str | None) -> bool:
    return value is not None and value.strip().lower() in _TRUE


def _sample_from_row(row: dict[str, str], default_user: str) -> PositionSample:
    return PositionSample(
        user_id=(row.get("userId") or default_user).strip(),
        latitude=float(row["latitude"].strip()),
        longitude=float(row["longitude"].strip()),
        # 缺失时间戳的行保留下来，交给事件引擎拒绝（可观测）
        captured_at_ms=_opt_int(row.get("geoTime")),
        source=_parse_source(row.get("source")),
        altitude_m=_opt_float(row.get("altitude")),
        speed_mps=_opt_float(row.get("speed")),
        heading_deg=_opt_float(row.get("course")),
        accuracy_m=_opt_float(row.get("horizontalAccuracy")),
        battery_level=_opt_float(row.get("batteryLevel")),
        is_mock=_parse_bool(row.get("isMock")),
        task_id=(row.get("taskId") or "").strip() or None,
    )


def load_position_samples(
    csv_path: str | Path,
    default_user: str = "worker",
) -> tuple[list[PositionSample], CsvSummary]:
    """Load all position samples into memory.

    Columns (camelCase, as exported by the mobile app): userId, geoTime (epoch ms), latitude,
    longitude, altitude, speed, course, horizontalAccuracy, source (gps/network/passive),
    batteryLevel, isMock, taskId. Only latitude/longitude are required.

    Returns:
        (samples, summary)

    Raises:
        KeyError: latitude/longitude columns are missing.
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[PositionSample] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        missing = [c for c in ("latitude", "longitude") if c not in fieldnames]
        if missing:
            raise KeyError(f"CSV缺少必要字段：{missing}. 实际字段：{list(fieldnames)}")
        for row in reader:
            rows_total += 1
            try:
                parsed.append(_sample_from_row(row, default_user))
            except (ValueError, TypeError, AttributeError):
                # 某些行可能损坏/空行，直接跳过
                continue

    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("CSV中有 %s 行解析失败已跳过", summary.rows_skipped)
    return parsed, summary


def load_status_log(csv_path: str | Path, tz_name: str) -> tuple[list[StatusChange], CsvSummary]:
    """Load a task status log: taskId, status ("In Progress"/"Paused"/...), time, optional userId.

    ``time`` may be epoch ms or a datetime string (naive strings are read in ``tz_name``).
    Rows are returned in file order.
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[StatusChange] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        missing = [c for c in ("taskId", "status", "time") if c not in fieldnames]
        if missing:
            raise KeyError(f"CSV缺少必要字段：{missing}. 实际字段：{list(fieldnames)}")
        for row in reader:
            rows_total += 1
            try:
                parsed.append(
                    StatusChange(
                        task_id=row["taskId"].strip(),
                        status=TaskStatus(row["status"].strip()),
                        at_ms=parse_epoch_ms(row["time"], tz_name),
                        user_id=(row.get("userId") or "").strip() or None,
                    )
                )
            except (ValueError, TypeError, AttributeError):
                continue

    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("状态日志中有 %s 行解析失败已跳过", summary.rows_skipped)
    return parsed, summary


EVENT_FIELDS: Sequence[str] = (
    "event_id",
    "time_local",
    "at_ms",
    "event_type",
    "task_id",
    "user_id",
    "latitude",
    "longitude",
    "geofence_id",
    "constraint_id",
    "notes",
)


def write_events_csv(events: Iterable[LocationEvent], out_path: str | Path, tz_name: str) -> int:
    """Write location events to CSV; returns the number of rows written."""

    p = Path(out_path)
    n = 0
    with p.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=list(EVENT_FIELDS))
        w.writeheader()
        for e in events:
            w.writerow(
                {
                    "event_id": e.event_id,
                    "time_local": dt_from_epoch_ms(e.at_ms, tz_name).isoformat(sep=" "),
                    "at_ms": e.at_ms,
                    "event_type": e.event_type.value,
                    "task_id": e.task_id,
                    "user_id": e.user_id,
                    "latitude": e.latitude,
                    "longitude": e.longitude,
                    "geofence_id": e.geofence_id or "",
                    "constraint_id": e.constraint_id or "",
                    "notes": e.notes or "",
                }
            )
            n += 1
    return n
