"""Prioritized alerts derived from location events and task transitions."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Final, Mapping

from fieldtrack.errors import AlertStateError, UnknownAlertError
from fieldtrack.models import (
    Alert,
    AlertPriority,
    AlertType,
    LocationEvent,
    LocationEventType,
    TimeLogAction,
    new_id,
)
from fieldtrack.timing import TransitionResult

logger = logging.getLogger(__name__)

AlertRule = tuple[AlertType, AlertPriority]

DEFAULT_EVENT_RULES: Final[Mapping[LocationEventType, AlertRule]] = {
    LocationEventType.ARRIVAL: (AlertType.ARRIVAL, AlertPriority.MEDIUM),
    LocationEventType.DEPARTURE: (AlertType.DEPARTURE, AlertPriority.MEDIUM),
    LocationEventType.BOUNDARY_VIOLATION: (AlertType.OUT_OF_BOUNDS, AlertPriority.HIGH),
}

DEFAULT_TRANSITION_RULES: Final[Mapping[TimeLogAction, AlertRule]] = {
    TimeLogAction.COMPLETE: (AlertType.TASK_COMPLETION, AlertPriority.LOW),
}

_TITLES: Final[Mapping[AlertType, str]] = {
    AlertType.TASK_COMPLETION: "任务已完成",
    AlertType.ARRIVAL: "已到达任务地点",
    AlertType.DEPARTURE: "已离开任务地点",
    AlertType.OUT_OF_BOUNDS: "任务进行中离开围栏",
    AlertType.EMERGENCY: "紧急求助",
}


class AlertDispatcher:
    """Maps events and transitions to alerts, at most one alert per (source id, alert type).

    A repeated dispatch returns the alert created the first time. Callers that persist or
    publish alerts pass ``only_new=True`` and get None for a repeat instead, so each alert is
    handed on exactly once.

    Read and acknowledged are independent one-way flags.
    """

    def __init__(
        self,
        event_rules: Mapping[LocationEventType, AlertRule] | None = None,
        transition_rules: Mapping[TimeLogAction, AlertRule] | None = None,
    ) -> None:
        self._event_rules = dict(DEFAULT_EVENT_RULES if event_rules is None else event_rules)
        self._transition_rules = dict(DEFAULT_TRANSITION_RULES if transition_rules is None else transition_rules)
        self._lock = threading.Lock()
        self._by_key: dict[tuple[str, AlertType], str] = {}
        self._alerts: dict[str, Alert] = {}

    def dispatch_event(self, event: LocationEvent, *, only_new: bool = False) -> Alert | None:
        """Alert for a location event, or None when no rule covers its type."""

        rule = self._event_rules.get(event.event_type)
        if rule is None:
            return None
        alert_type, priority = rule
        alert, created = self._create(
            source_id=event.event_id,
            alert_type=alert_type,
            priority=priority,
            user_id=event.user_id,
            task_id=event.task_id,
            at_ms=event.at_ms,
            message=f"任务 {event.task_id}：{event.event_type.value}",
            latitude=event.latitude,
            longitude=event.longitude,
        )
        return alert if created or not only_new else None

    def dispatch_transition(self, result: TransitionResult, *, only_new: bool = False) -> Alert | None:
        """Alert for an accepted task transition, or None when no rule covers the action."""

        entry = result.entry
        rule = self._transition_rules.get(entry.action)
        if rule is None:
            return None
        user_id = entry.user_id or result.task.assigned_to
        if not user_id:
            logger.warning("任务 %s 未分配用户，跳过 %s 告警", entry.task_id, entry.action.value)
            return None
        alert_type, priority = rule
        alert, created = self._create(
            source_id=entry.entry_id,
            alert_type=alert_type,
            priority=priority,
            user_id=user_id,
            task_id=entry.task_id,
            at_ms=entry.at_ms,
            message=f"任务 {entry.task_id}：{entry.action.value}",
        )
        return alert if created or not only_new else None

    def raise_emergency(
        self,
        *,
        user_id: str,
        at_ms: int,
        task_id: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        message: str = "",
        source_id: str | None = None,
        only_new: bool = False,
    ) -> Alert | None:
        """Critical alert raised explicitly by a worker.

        Never None unless ``only_new`` is set and ``source_id`` was raised before.
        """

        alert, created = self._create(
            source_id=source_id or new_id(),
            alert_type=AlertType.EMERGENCY,
            priority=AlertPriority.CRITICAL,
            user_id=user_id,
            task_id=task_id,
            at_ms=at_ms,
            message=message or "用户发起紧急求助",
            latitude=latitude,
            longitude=longitude,
        )
        if not created:
            return None if only_new else alert
        logger.warning("紧急告警：user=%s task=%s", user_id, task_id)
        return alert

    def get(self, alert_id: str) -> Alert:
        with self._lock:
            return self._require(alert_id)

    def alerts(self, user_id: str | None = None, unread_only: bool = False) -> list[Alert]:
        """Alerts, newest first."""

        with self._lock:
            items = list(self._alerts.values())
        if user_id is not None:
            items = [a for a in items if a.user_id == user_id]
        if unread_only:
            items = [a for a in items if not a.is_read]
        items.sort(key=lambda a: a.created_at_ms, reverse=True)
        return items

    def mark_read(self, alert_id: str) -> Alert:
        with self._lock:
            alert = self._require(alert_id)
            if alert.is_read:
                raise AlertStateError(f"告警已读：{alert_id!r}")
            updated = replace(alert, is_read=True)
            self._alerts[alert_id] = updated
        return updated

    def acknowledge(self, alert_id: str, at_ms: int) -> Alert:
        with self._lock:
            alert = self._require(alert_id)
            if alert.is_acknowledged:
                raise AlertStateError(f"告警已确认：{alert_id!r}")
            updated = replace(alert, is_acknowledged=True, acknowledged_at_ms=at_ms)
            self._alerts[alert_id] = updated
        return updated

    def _require(self, alert_id: str) -> Alert:
        try:
            return self._alerts[alert_id]
        except KeyError:
            raise UnknownAlertError(f"未知告警：{alert_id!r}") from None

    def _create(
        self,
        *,
        source_id: str,
        alert_type: AlertType,
        priority: AlertPriority,
        user_id: str,
        task_id: str | None,
        at_ms: int,
        message: str,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> tuple[Alert, bool]:
        """The alert for (source_id, alert_type), and whether this call created it."""

        key = (source_id, alert_type)
        with self._lock:
            existing_id = self._by_key.get(key)
            if existing_id is not None:
                logger.debug("重复分发已忽略：source=%s type=%s", source_id, alert_type.value)
                return self._alerts[existing_id], False
            alert = Alert(
                alert_id=new_id(),
                user_id=user_id,
                alert_type=alert_type,
                priority=priority,
                title=_TITLES[alert_type],
                message=message,
                source_id=source_id,
                created_at_ms=at_ms,
                task_id=task_id,
                latitude=latitude,
                longitude=longitude,
            )
            self._by_key[key] = alert.alert_id
            self._alerts[alert.alert_id] = alert
        return alert, True
