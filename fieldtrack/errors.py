"""Typed failures raised by the engine."""

from __future__ import annotations


class FieldTrackError(Exception):
    """Base class for every failure reported by fieldtrack."""


class ValidationError(FieldTrackError, ValueError):
    """Invalid input: geofence, constraint, sample or manual event."""


class InvalidTransitionError(FieldTrackError):
    """A task status change that the lifecycle does not allow."""

    def __init__(self, task_id: str, current: object, target: object) -> None:
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"任务 {task_id!r} 不允许从 {current} 转换到 {target}")


class TransitionConflictError(FieldTrackError):
    """The task changed since the caller last read it; re-read and retry."""

    def __init__(self, task_id: str, expected_version: int, actual_version: int) -> None:
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"任务 {task_id!r} 版本冲突：期望 version={expected_version}，实际 version={actual_version}"
        )


class AuditWriteError(FieldTrackError):
    """The audit record could not be written; the transition was not committed."""


class AlertStateError(FieldTrackError):
    """An alert's read/acknowledged flag was already set."""


class NotFoundError(FieldTrackError, LookupError):
    """A referenced entity does not exist."""


class UnknownTaskError(NotFoundError):
    pass


class UnknownGeofenceError(NotFoundError):
    pass


class UnknownAlertError(NotFoundError):
    pass
