"""Task lifecycle state machine and working-time accounting."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Final, Mapping

from fieldtrack.errors import (
    AuditWriteError,
    InvalidTransitionError,
    TransitionConflictError,
    UnknownTaskError,
    ValidationError,
)
from fieldtrack.models import Task, TaskStatus, TimeLogAction, TimeLogEntry, new_id

logger = logging.getLogger(__name__)

AuditSink = Callable[[TimeLogEntry], None]

ALLOWED_TRANSITIONS: Final[Mapping[TaskStatus, frozenset[TaskStatus]]] = {
    TaskStatus.NOT_STARTED: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.PAUSED, TaskStatus.COMPLETED}),
    TaskStatus.PAUSED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset(),
}


def _pause_ms(task: Task, now_ms: int) -> int:
    """Length of the pause still open at now_ms, 0 when the task is not paused."""

    return 0 if task.last_pause_at_ms is None else now_ms - task.last_pause_at_ms


def _latest_ms(task: Task) -> int | None:
    stamps = [t for t in (task.started_at_ms, task.last_pause_at_ms, task.completed_at_ms) if t is not None]
    return max(stamps) if stamps else None


def apply_transition(task: Task, target: TaskStatus, now_ms: int) -> tuple[Task, TimeLogAction]:
    """Compute the task state after moving to ``target`` at ``now_ms``.

    Pure: the input task is not modified and nothing is logged.

    Raises:
        InvalidTransitionError: ``target`` is not reachable from the current status
            (this includes targeting the current status).
        ValidationError: ``now_ms`` is earlier than the last recorded timestamp of the task.
    """

    if target not in ALLOWED_TRANSITIONS[task.status]:
        raise InvalidTransitionError(task.task_id, task.status.value, target.value)

    latest = _latest_ms(task)
    if latest is not None and now_ms < latest:
        raise ValidationError(f"任务 {task.task_id!r}：时间倒退（now={now_ms} < 上次记录={latest}）")

    if target is TaskStatus.IN_PROGRESS:
        if task.status is TaskStatus.NOT_STARTED:
            return replace(task, status=target, started_at_ms=now_ms), TimeLogAction.START
        return (
            replace(
                task,
                status=target,
                total_pause_ms=task.total_pause_ms + _pause_ms(task, now_ms),
                last_pause_at_ms=None,
            ),
            TimeLogAction.RESUME,
        )

    if target is TaskStatus.PAUSED:
        return replace(task, status=target, last_pause_at_ms=now_ms), TimeLogAction.PAUSE

    # Completed: flush a pending pause first, ending it at now_ms.
    return (
        replace(
            task,
            status=target,
            total_pause_ms=task.total_pause_ms + _pause_ms(task, now_ms),
            last_pause_at_ms=None,
            completed_at_ms=now_ms,
        ),
        TimeLogAction.COMPLETE,
    )


def working_time_ms(task: Task, now_ms: int) -> int:
    """Elapsed time spent In Progress, excluding every paused interval.

    Non-negative, non-decreasing while In Progress and frozen once Completed.
    """

    if task.started_at_ms is None:
        return 0
    end = task.completed_at_ms if task.completed_at_ms is not None else now_ms
    pending_pause = 0
    if task.status is TaskStatus.PAUSED and task.last_pause_at_ms is not None:
        pending_pause = max(0, now_ms - task.last_pause_at_ms)
    return max(0, (end - task.started_at_ms) - task.total_pause_ms - pending_pause)


def pause_time_ms(task: Task, now_ms: int) -> int:
    """Accumulated pause time including a pause still in progress."""

    if task.status is TaskStatus.PAUSED and task.last_pause_at_ms is not None:
        return task.total_pause_ms + max(0, now_ms - task.last_pause_at_ms)
    return task.total_pause_ms


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Outcome of an accepted transition."""

    previous: Task
    task: Task
    entry: TimeLogEntry


class TaskTimingEngine:
    """Holds current task states and applies status-change requests to them.

    Transitions on one task id run under that task's lock. Callers that read a task and
    decide on a transition later can pass ``expected_version`` to detect a lost update.

    The audit record is handed to ``audit_sink`` before the new state is committed; if the
    sink raises, the state change is discarded.
    """

    def __init__(self, audit_sink: AuditSink | None = None) -> None:
        self._audit_sink = audit_sink
        self._tasks: dict[str, Task] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._audit: list[TimeLogEntry] = []

    def register(self, task: Task) -> Task:
        with self._registry_lock:
            if task.task_id in self._tasks:
                raise ValidationError(f"任务已存在：{task.task_id!r}")
            self._tasks[task.task_id] = task
            self._locks[task.task_id] = threading.Lock()
        return task

    def get(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise UnknownTaskError(f"未知任务：{task_id!r}") from None

    def tasks(self) -> list[Task]:
        with self._registry_lock:
            return list(self._tasks.values())

    def is_active(self, task_id: str) -> bool:
        """True while the task is In Progress."""

        task = self._tasks.get(task_id)
        return task is not None and task.status is TaskStatus.IN_PROGRESS

    def audit_log(self, task_id: str | None = None) -> list[TimeLogEntry]:
        with self._registry_lock:
            entries = list(self._audit)
        if task_id is None:
            return entries
        return [e for e in entries if e.task_id == task_id]

    def request_transition(
        self,
        task_id: str,
        target: TaskStatus,
        now_ms: int,
        *,
        expected_version: int | None = None,
        user_id: str | None = None,
    ) -> TransitionResult:
        """Move a task to ``target`` at ``now_ms``.

        Raises:
            UnknownTaskError: No such task.
            TransitionConflictError: ``expected_version`` does not match the current version.
            InvalidTransitionError: The lifecycle does not allow the change.
            ValidationError: ``now_ms`` lies before the task's last recorded timestamp.
            AuditWriteError: The audit sink failed; the task is left unchanged.
        """

        with self._registry_lock:
            lock = self._locks.get(task_id)
        if lock is None:
            raise UnknownTaskError(f"未知任务：{task_id!r}")

        with lock:
            current = self._tasks[task_id]
            if expected_version is not None and expected_version != current.version:
                raise TransitionConflictError(task_id, expected_version, current.version)

            staged, action = apply_transition(current, target, now_ms)
            staged = replace(staged, version=current.version + 1)
            entry = TimeLogEntry(
                entry_id=new_id(),
                task_id=task_id,
                action=action,
                at_ms=now_ms,
                user_id=user_id if user_id is not None else current.assigned_to,
            )

            if self._audit_sink is not None:
                try:
                    self._audit_sink(entry)
                except Exception as exc:
                    logger.error("任务 %s 的审计记录写入失败，已回滚 %s", task_id, action.value)
                    raise AuditWriteError(f"任务 {task_id!r} 审计记录写入失败：{exc}") from exc

            with self._registry_lock:
                self._tasks[task_id] = staged
                self._audit.append(entry)

        logger.debug("任务 %s：%s -> %s (%s)", task_id, current.status.value, target.value, action.value)
        return TransitionResult(previous=current, task=staged, entry=entry)
