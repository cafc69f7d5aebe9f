"""Tests for alert creation and alert state."""

from __future__ import annotations

import pytest

from conftest import HOUR, T0
from fieldtrack.alerts import AlertDispatcher
from fieldtrack.errors import AlertStateError, UnknownAlertError
from fieldtrack.models import (
    AlertPriority,
    AlertType,
    LocationEvent,
    LocationEventType,
    Task,
    TaskStatus,
)
from fieldtrack.timing import TaskTimingEngine


def _event(event_type: LocationEventType, event_id: str = "e1", at_ms: int = T0) -> LocationEvent:
    return LocationEvent(
        event_id=event_id,
        task_id="t1",
        user_id="u1",
        event_type=event_type,
        latitude=31.0,
        longitude=121.0,
        at_ms=at_ms,
    )


@pytest.fixture
def dispatcher():
    return AlertDispatcher()


class TestEventRules:
    @pytest.mark.parametrize(
        "event_type, alert_type, priority",
        [
            (LocationEventType.ARRIVAL, AlertType.ARRIVAL, AlertPriority.MEDIUM),
            (LocationEventType.DEPARTURE, AlertType.DEPARTURE, AlertPriority.MEDIUM),
            (LocationEventType.BOUNDARY_VIOLATION, AlertType.OUT_OF_BOUNDS, AlertPriority.HIGH),
        ],
    )
    def test_default_mapping(self, dispatcher, event_type, alert_type, priority):
        alert = dispatcher.dispatch_event(_event(event_type))
        assert alert is not None
        assert (alert.alert_type, alert.priority) == (alert_type, priority)
        assert alert.source_id == "e1"
        assert alert.task_id == "t1"
        assert alert.created_at_ms == T0
        assert not alert.is_read and not alert.is_acknowledged

    @pytest.mark.parametrize("event_type", [LocationEventType.CHECK_IN, LocationEventType.CHECK_OUT])
    def test_manual_events_raise_nothing(self, dispatcher, event_type):
        assert dispatcher.dispatch_event(_event(event_type)) is None
        assert dispatcher.alerts() == []

    def test_dispatch_is_idempotent(self, dispatcher):
        first = dispatcher.dispatch_event(_event(LocationEventType.ARRIVAL))
        second = dispatcher.dispatch_event(_event(LocationEventType.ARRIVAL))
        assert first == second
        assert len(dispatcher.alerts()) == 1

    def test_only_new_reports_repeat_as_none(self, dispatcher):
        first = dispatcher.dispatch_event(_event(LocationEventType.DEPARTURE), only_new=True)
        assert first is not None
        assert dispatcher.dispatch_event(_event(LocationEventType.DEPARTURE), only_new=True) is None
        assert dispatcher.dispatch_event(_event(LocationEventType.DEPARTURE)) == first

    def test_custom_rules(self):
        d = AlertDispatcher(event_rules={LocationEventType.CHECK_IN: (AlertType.ARRIVAL, AlertPriority.LOW)})
        assert d.dispatch_event(_event(LocationEventType.ARRIVAL)) is None
        alert = d.dispatch_event(_event(LocationEventType.CHECK_IN))
        assert alert is not None and alert.priority is AlertPriority.LOW


class TestTransitionRules:
    def _run(self, engine: TaskTimingEngine, *targets: TaskStatus):
        results = []
        for i, target in enumerate(targets):
            results.append(engine.request_transition("t1", target, T0 + i * HOUR))
        return results

    def test_only_completion_alerts(self, dispatcher):
        engine = TaskTimingEngine()
        engine.register(Task(task_id="t1", assigned_to="u1"))
        results = self._run(
            engine, TaskStatus.IN_PROGRESS, TaskStatus.PAUSED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED
        )
        alerts = [dispatcher.dispatch_transition(r) for r in results]
        assert alerts[:3] == [None, None, None]
        done = alerts[3]
        assert done is not None
        assert (done.alert_type, done.priority) == (AlertType.TASK_COMPLETION, AlertPriority.LOW)
        assert done.user_id == "u1"
        assert done.source_id == results[3].entry.entry_id

    def test_unassigned_task_is_skipped(self, dispatcher):
        engine = TaskTimingEngine()
        engine.register(Task(task_id="t1"))
        results = self._run(engine, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)
        assert dispatcher.dispatch_transition(results[-1]) is None


class TestAlertState:
    def test_read_and_ack_are_independent(self, dispatcher):
        alert = dispatcher.dispatch_event(_event(LocationEventType.ARRIVAL))
        acked = dispatcher.acknowledge(alert.alert_id, T0 + HOUR)
        assert acked.is_acknowledged and not acked.is_read
        assert acked.acknowledged_at_ms == T0 + HOUR
        read = dispatcher.mark_read(alert.alert_id)
        assert read.is_read and read.is_acknowledged

    def test_flags_never_go_back(self, dispatcher):
        alert = dispatcher.dispatch_event(_event(LocationEventType.ARRIVAL))
        dispatcher.mark_read(alert.alert_id)
        dispatcher.acknowledge(alert.alert_id, T0)
        with pytest.raises(AlertStateError):
            dispatcher.mark_read(alert.alert_id)
        with pytest.raises(AlertStateError):
            dispatcher.acknowledge(alert.alert_id, T0 + HOUR)
        assert dispatcher.get(alert.alert_id).acknowledged_at_ms == T0

    def test_unknown_alert(self, dispatcher):
        with pytest.raises(UnknownAlertError):
            dispatcher.mark_read("nope")

    def test_listing_newest_first_and_unread(self, dispatcher):
        a1 = dispatcher.dispatch_event(_event(LocationEventType.ARRIVAL, "e1", T0))
        a2 = dispatcher.dispatch_event(_event(LocationEventType.DEPARTURE, "e2", T0 + HOUR))
        assert [a.alert_id for a in dispatcher.alerts()] == [a2.alert_id, a1.alert_id]
        dispatcher.mark_read(a2.alert_id)
        assert [a.alert_id for a in dispatcher.alerts(unread_only=True)] == [a1.alert_id]
        assert dispatcher.alerts(user_id="someone-else") == []


class TestEmergency:
    def test_critical(self, dispatcher):
        alert = dispatcher.raise_emergency(user_id="u1", at_ms=T0, task_id="t1", latitude=31.0, longitude=121.0)
        assert alert.alert_type is AlertType.EMERGENCY
        assert alert.priority is AlertPriority.CRITICAL
        assert alert.message

    def test_same_source_is_deduplicated(self, dispatcher):
        a = dispatcher.raise_emergency(user_id="u1", at_ms=T0, source_id="sos-1")
        b = dispatcher.raise_emergency(user_id="u1", at_ms=T0 + 1, source_id="sos-1")
        assert a.alert_id == b.alert_id

    def test_only_new_repeat_returns_none(self, dispatcher):
        a = dispatcher.raise_emergency(user_id="u1", at_ms=T0, source_id="sos-1", only_new=True)
        b = dispatcher.raise_emergency(user_id="u1", at_ms=T0 + 1, source_id="sos-1", only_new=True)
        assert a is not None
        assert b is None
        assert dispatcher.alerts() == [a]
