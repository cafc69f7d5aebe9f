"""Arrival/departure detection from position samples, plus manual check-in/check-out."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from fieldtrack.directory import GeofenceDirectory
from fieldtrack.errors import ValidationError
from fieldtrack.geo import Circle, contains, haversine_m, is_inside_circle, is_valid_coordinate
from fieldtrack.models import (
    LocationEvent,
    LocationEventType,
    MovementRecord,
    PositionSample,
    TaskLocationConstraint,
    new_id,
)

logger = logging.getLogger(__name__)

MANUAL_EVENT_TYPES = frozenset({LocationEventType.CHECK_IN, LocationEventType.CHECK_OUT})


@dataclass(frozen=True, slots=True)
class EventParams:
    """Parameters controlling event generation."""

    # Exit confirmation: a departure needs the worker to stay outside at least this long.
    # This helps against GPS jitter around the boundary.
    exit_grace_seconds: float = 60.0
    # Once inside, a sample only counts as outside beyond radius + exit_buffer_m.
    exit_buffer_m: float = 0.0
    # Movement history skips samples closer than this to the previously recorded one.
    movement_threshold_m: float = 10.0

    def __post_init__(self) -> None:
        for name in ("exit_grace_seconds", "exit_buffer_m", "movement_threshold_m"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValidationError(f"{name} 必须是非负数：{value!r}")


@dataclass(slots=True)
class ContainmentState:
    """Last known containment of one user against one constraint."""

    inside: bool | None = None
    last_ms: int | None = None
    # First outside sample (and its capture time) of a departure that is not confirmed yet.
    pending_exit: tuple[PositionSample, int] | None = None


@dataclass(frozen=True, slots=True)
class SampleOutcome:
    """What happened to one position sample.

    Attributes:
        accepted: False when the sample was malformed; ``reason`` says why.
        movement: The record appended to the user's movement history, if any.
        events: Arrival/departure/boundary events derived from this sample.
        late_constraints: Constraint ids for which the sample arrived out of order and was dropped.
    """

    sample: PositionSample
    accepted: bool
    reason: str | None = None
    movement: MovementRecord | None = None
    events: tuple[LocationEvent, ...] = ()
    late_constraints: tuple[str, ...] = ()

    @property
    def recorded(self) -> bool:
        return self.movement is not None


def validate_sample(sample: PositionSample) -> str | None:
    """Return why a sample must be rejected, or None if it is usable."""

    if sample.captured_at_ms is None:
        return "missing_timestamp"
    if not sample.user_id:
        return "missing_user"
    try:
        ok = is_valid_coordinate(sample.latitude, sample.longitude)
    except TypeError:
        ok = False
    if not ok:
        return "invalid_coordinates"
    return None


class LocationEventGenerator:
    """Turns per-user position samples into location events.

    For every (user, constraint) pair the last known containment is kept. Only transitions emit
    events, so a dense stream of interior samples produces a single arrival. A departure is
    confirmed once the worker has been outside for ``exit_grace_seconds``.

    Mock samples are kept in movement history but never move the containment state.
    """

    def __init__(
        self,
        directory: GeofenceDirectory,
        params: EventParams | None = None,
        is_task_active: Callable[[str], bool] | None = None,
    ) -> None:
        self._directory = directory
        self._params = params or EventParams()
        self._is_task_active = is_task_active
        self._constraints: dict[str, dict[str, TaskLocationConstraint]] = {}
        self._states: dict[tuple[str, str], ContainmentState] = {}
        self._history: dict[str, list[MovementRecord]] = {}
        self._user_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @property
    def params(self) -> EventParams:
        return self._params

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._user_locks.setdefault(user_id, threading.Lock())

    def assign(self, user_id: str, constraint: TaskLocationConstraint) -> None:
        """Watch ``constraint`` for ``user_id``.

        Raises:
            UnknownGeofenceError: The constraint references a geofence the directory does not know.
        """

        self._directory.resolve(constraint.location)
        with self._registry_lock:
            watched = self._constraints.setdefault(user_id, {})
        with self._user_lock(user_id):
            watched[constraint.constraint_id] = constraint
        logger.debug("用户 %s 开始监控约束 %s（任务 %s）", user_id, constraint.constraint_id, constraint.task_id)

    def release(self, user_id: str, task_id: str | None = None) -> int:
        """Stop watching constraints of ``user_id`` (all of them, or those of one task)."""

        with self._user_lock(user_id):
            watched = self._constraints.get(user_id, {})
            drop = [cid for cid, c in watched.items() if task_id is None or c.task_id == task_id]
            for cid in drop:
                del watched[cid]
                self._states.pop((user_id, cid), None)
        return len(drop)

    def constraints(self, user_id: str) -> list[TaskLocationConstraint]:
        with self._user_lock(user_id):
            return list(self._constraints.get(user_id, {}).values())

    def task_constraints(self, task_id: str) -> list[TaskLocationConstraint]:
        """Every watched constraint of ``task_id``, across users, one per constraint id."""

        with self._registry_lock:
            users = list(self._constraints)
        found: dict[str, TaskLocationConstraint] = {}
        for user_id in users:
            for c in self.constraints(user_id):
                if c.task_id == task_id:
                    found.setdefault(c.constraint_id, c)
        return list(found.values())

    def satisfies(self, task_id: str, sample: PositionSample) -> bool:
        """Whether ``sample`` lies at any of the task's locations.

        A single-sample check for "is the worker on site right now"; containment state is not
        consulted or changed. Mock and malformed samples never satisfy a task, nor does a task
        without watched constraints.
        """

        if sample.is_mock or validate_sample(sample) is not None:
            return False
        return any(
            contains(sample.latitude, sample.longitude, self._directory.resolve(c.location))
            for c in self.task_constraints(task_id)
        )

    def containment(self, user_id: str, constraint_id: str) -> bool | None:
        """True/False for inside/outside, None while unknown."""

        with self._user_lock(user_id):
            state = self._states.get((user_id, constraint_id))
            return None if state is None else state.inside

    def movement_history(self, user_id: str) -> list[MovementRecord]:
        with self._user_lock(user_id):
            return list(self._history.get(user_id, []))

    def process_sample(self, sample: PositionSample) -> SampleOutcome:
        """Feed one sample. Samples of one user are expected in capture-time order."""

        at_ms = sample.captured_at_ms
        reason = "missing_timestamp" if at_ms is None else validate_sample(sample)
        if at_ms is None or reason is not None:
            logger.warning("丢弃无效定位样本（user=%s, reason=%s）", sample.user_id, reason)
            return SampleOutcome(sample=sample, accepted=False, reason=reason)

        events: list[LocationEvent] = []
        late: list[str] = []
        with self._user_lock(sample.user_id):
            movement = self._record_movement(sample, at_ms)
            if sample.is_mock:
                logger.info("模拟定位样本仅记录轨迹，不参与到达/离开判断（user=%s）", sample.user_id)
                return SampleOutcome(sample=sample, accepted=True, movement=movement)

            for c in list(self._constraints.get(sample.user_id, {}).values()):
                state = self._states.setdefault((sample.user_id, c.constraint_id), ContainmentState())
                if state.last_ms is not None and at_ms < state.last_ms:
                    late.append(c.constraint_id)
                    continue
                state.last_ms = at_ms
                circle = self._directory.resolve(c.location)
                events.extend(self._step(sample, at_ms, c, circle, state))

        if late:
            logger.warning("迟到样本已丢弃（user=%s, t=%s, constraints=%s）", sample.user_id, at_ms, late)
        return SampleOutcome(
            sample=sample,
            accepted=True,
            movement=movement,
            events=tuple(events),
            late_constraints=tuple(late),
        )

    def process_batch(self, samples: Iterable[PositionSample]) -> list[SampleOutcome]:
        """Sort by capture time (samples without a timestamp last) and process in order."""

        pts: Sequence[PositionSample] = sorted(
            samples, key=lambda s: (s.captured_at_ms is None, s.captured_at_ms or 0)
        )
        return [self.process_sample(s) for s in pts]

    def record_manual(
        self,
        *,
        task_id: str,
        user_id: str,
        event_type: LocationEventType | str,
        latitude: float,
        longitude: float,
        at_ms: int,
        geofence_id: str | None = None,
        notes: str | None = None,
    ) -> LocationEvent:
        """Record an explicit check-in/check-out; containment state is not consulted or changed.

        Raises:
            ValidationError: Not a check-in/check-out, or the coordinates/timestamp are unusable.
        """

        try:
            etype = LocationEventType(event_type)
        except ValueError as exc:
            raise ValidationError(f"未知事件类型：{event_type!r}") from exc
        if etype not in MANUAL_EVENT_TYPES:
            raise ValidationError(f"只能手动记录 check_in/check_out，收到：{etype.value}")
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError(f"无效坐标：({latitude!r}, {longitude!r})")
        if at_ms is None:
            raise ValidationError("缺少事件时间")
        return LocationEvent(
            event_id=new_id(),
            task_id=task_id,
            user_id=user_id,
            event_type=etype,
            latitude=latitude,
            longitude=longitude,
            at_ms=at_ms,
            geofence_id=geofence_id,
            notes=notes,
        )

    def _record_movement(self, sample: PositionSample, at_ms: int) -> MovementRecord | None:
        history = self._history.setdefault(sample.user_id, [])
        threshold = self._params.movement_threshold_m
        if history and threshold > 0:
            last = history[-1]
            if haversine_m(last.latitude, last.longitude, sample.latitude, sample.longitude) < threshold:
                return None
        record = MovementRecord(
            user_id=sample.user_id,
            latitude=sample.latitude,
            longitude=sample.longitude,
            captured_at_ms=at_ms,
            source=sample.source,
            is_mock=sample.is_mock,
            task_id=sample.task_id,
            accuracy_m=sample.accuracy_m,
            battery_level=sample.battery_level,
        )
        history.append(record)
        return record

    def _step(
        self,
        sample: PositionSample,
        at_ms: int,
        constraint: TaskLocationConstraint,
        circle: Circle,
        state: ContainmentState,
    ) -> list[LocationEvent]:
        if not state.inside:
            if contains(sample.latitude, sample.longitude, circle):
                state.inside = True
                state.pending_exit = None
                if constraint.arrival_required:
                    return [self._event(LocationEventType.ARRIVAL, sample, at_ms, constraint)]
                return []
            state.inside = False
            return []

        still_inside = is_inside_circle(
            sample.latitude,
            sample.longitude,
            circle.center_lat,
            circle.center_lon,
            circle.radius_m + self._params.exit_buffer_m,
        )
        if still_inside:
            state.pending_exit = None
            return []

        if state.pending_exit is None:
            state.pending_exit = (sample, at_ms)
        first_out, first_out_ms = state.pending_exit
        if (at_ms - first_out_ms) / 1000.0 < self._params.exit_grace_seconds:
            return []

        state.inside = False
        state.pending_exit = None
        out: list[LocationEvent] = []
        if constraint.departure_required:
            out.append(self._event(LocationEventType.DEPARTURE, first_out, first_out_ms, constraint))
        if self._is_task_active is not None and self._is_task_active(constraint.task_id):
            out.append(self._event(LocationEventType.BOUNDARY_VIOLATION, first_out, first_out_ms, constraint))
        return out

    @staticmethod
    def _event(
        event_type: LocationEventType,
        sample: PositionSample,
        at_ms: int,
        constraint: TaskLocationConstraint,
    ) -> LocationEvent:
        return LocationEvent(
            event_id=new_id(),
            task_id=constraint.task_id,
            user_id=sample.user_id,
            event_type=event_type,
            latitude=sample.latitude,
            longitude=sample.longitude,
            at_ms=at_ms,
            geofence_id=constraint.geofence_id,
            constraint_id=constraint.constraint_id,
        )
