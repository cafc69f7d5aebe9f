"""Data models for geofences, position samples, tasks, events and alerts."""

from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Final, Union

from fieldtrack.errors import ValidationError
from fieldtrack.geo import is_valid_coordinate

DEFAULT_TZ: Final[str] = "Asia/Shanghai"


def new_id() -> str:
    """Random hex identifier for engine-produced records."""

    return uuid.uuid4().hex


def _record(obj: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in asdict(obj).items():
        out[key] = value.value if isinstance(value, Enum) else value
    return out


def _check_circle(center_lat: float, center_lon: float, radius_m: float) -> None:
    if not is_valid_coordinate(center_lat, center_lon):
        raise ValidationError(f"无效中心点坐标：({center_lat!r}, {center_lon!r})")
    if not math.isfinite(radius_m) or radius_m <= 0:
        raise ValidationError(f"围栏半径必须大于0：radius_m={radius_m!r}")


class LocationSource(str, Enum):
    GPS = "gps"
    NETWORK = "network"
    PASSIVE = "passive"


class TaskStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    PAUSED = "Paused"
    COMPLETED = "Completed"


class TimeLogAction(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    COMPLETE = "complete"


class LocationEventType(str, Enum):
    ARRIVAL = "arrival"
    DEPARTURE = "departure"
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    BOUNDARY_VIOLATION = "boundary_violation"


class AlertType(str, Enum):
    TASK_COMPLETION = "task_completion"
    ARRIVAL = "arrival"
    DEPARTURE = "departure"
    OUT_OF_BOUNDS = "out_of_bounds"
    EMERGENCY = "emergency"


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class Geofence:
    """A named circular boundary.

    Geofences are never physically removed: deactivation clears ``is_active`` so that task
    constraints referencing the id keep resolving.
    """

    geofence_id: str
    name: str
    center_lat: float
    center_lon: float
    radius_m: float
    is_active: bool = True
    description: str = ""

    def __post_init__(self) -> None:
        _check_circle(self.center_lat, self.center_lon, self.radius_m)

    def to_record(self) -> dict[str, Any]:
        return _record(self)


@dataclass(frozen=True, slots=True)
class GeofenceRef:
    """Location given by reference to a Geofence in the directory."""

    geofence_id: str

    def __post_init__(self) -> None:
        if not self.geofence_id:
            raise ValidationError("geofence_id 不能为空")


@dataclass(frozen=True, slots=True)
class InlineCircle:
    """Location given inline as center + radius."""

    center_lat: float
    center_lon: float
    radius_m: float

    def __post_init__(self) -> None:
        _check_circle(self.center_lat, self.center_lon, self.radius_m)


LocationRef = Union[GeofenceRef, InlineCircle]


@dataclass(frozen=True, slots=True)
class TaskLocationConstraint:
    """Where a task must be performed, and which events are generated automatically."""

    constraint_id: str
    task_id: str
    location: LocationRef
    arrival_required: bool = True
    departure_required: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.location, (GeofenceRef, InlineCircle)):
            raise ValidationError(
                f"约束 {self.constraint_id!r} 必须且只能指定一个位置（GeofenceRef 或 InlineCircle）"
            )
        if not self.task_id:
            raise ValidationError(f"约束 {self.constraint_id!r} 缺少 task_id")

    @property
    def geofence_id(self) -> str | None:
        return self.location.geofence_id if isinstance(self.location, GeofenceRef) else None


@dataclass(frozen=True, slots=True)
class PositionSample:
    """A single location report from a worker's device.

    Attributes:
        user_id: Reporting worker.
        latitude: Latitude in decimal degrees.
        longitude: Longitude in decimal degrees.
        captured_at_ms: Unix epoch milliseconds. None when the device did not provide one.
        source: Positioning source.
        is_mock: Device reported a mocked/spoofed location.
    """

    user_id: str
    latitude: float
    longitude: float
    captured_at_ms: int | None
    source: LocationSource = LocationSource.GPS
    altitude_m: float | None = None
    speed_mps: float | None = None
    heading_deg: float | None = None
    accuracy_m: float | None = None
    battery_level: float | None = None
    is_mock: bool = False
    task_id: str | None = None

    def to_record(self) -> dict[str, Any]:
        return _record(self)


@dataclass(frozen=True, slots=True)
class MovementRecord:
    """A sample accepted into a user's movement history."""

    user_id: str
    latitude: float
    longitude: float
    captured_at_ms: int
    source: LocationSource
    is_mock: bool
    task_id: str | None = None
    accuracy_m: float | None = None
    battery_level: float | None = None

    def to_record(self) -> dict[str, Any]:
        return _record(self)


@dataclass(frozen=True, slots=True)
class Task:
    """Timing state of a task.

    Note:
        ``last_pause_at_ms`` is set exactly when the status is Paused, and
        ``total_pause_ms`` only ever grows.
    """

    task_id: str
    assigned_to: str | None = None
    status: TaskStatus = TaskStatus.NOT_STARTED
    started_at_ms: int | None = None
    last_pause_at_ms: int | None = None
    total_pause_ms: int = 0
    completed_at_ms: int | None = None
    version: int = 0

    def __post_init__(self) -> None:
        paused = self.status is TaskStatus.PAUSED
        if paused != (self.last_pause_at_ms is not None):
            raise ValidationError(
                f"任务 {self.task_id!r}：last_pause_at 仅在 Paused 状态下有值（status={self.status.value}）"
            )
        if self.total_pause_ms < 0:
            raise ValidationError(f"任务 {self.task_id!r}：total_pause_ms 不能为负")

    def to_record(self) -> dict[str, Any]:
        return _record(self)


@dataclass(frozen=True, slots=True)
class TimeLogEntry:
    """Append-only audit record of an accepted status transition."""

    entry_id: str
    task_id: str
    action: TimeLogAction
    at_ms: int
    user_id: str | None = None

    def to_record(self) -> dict[str, Any]:
        return _record(self)


@dataclass(frozen=True, slots=True)
class LocationEvent:
    """Append-only location fact about a worker and a task."""

    event_id: str
    task_id: str
    user_id: str
    event_type: LocationEventType
    latitude: float
    longitude: float
    at_ms: int
    geofence_id: str | None = None
    constraint_id: str | None = None
    notes: str | None = None

    def to_record(self) -> dict[str, Any]:
        return _record(self)


@dataclass(frozen=True, slots=True)
class Alert:
    """A prioritized notification derived from an event or a transition."""

    alert_id: str
    user_id: str
    alert_type: AlertType
    priority: AlertPriority
    title: str
    message: str
    source_id: str
    created_at_ms: int
    task_id: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_read: bool = False
    is_acknowledged: bool = False
    acknowledged_at_ms: int | None = None

    def to_record(self) -> dict[str, Any]:
        return _record(self)
