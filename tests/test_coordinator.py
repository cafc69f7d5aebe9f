"""End-to-end tests through the coordinator."""

from __future__ import annotations

import pytest

from conftest import CENTER_LAT, CENTER_LON, HOUR, MINUTE, T0
from fieldtrack.channel import OutboundChannel
from fieldtrack.coordinator import FieldTaskCoordinator
from fieldtrack.errors import AuditWriteError
from fieldtrack.events import EventParams
from fieldtrack.models import (
    Alert,
    MovementRecord,
    AlertType,
    InlineCircle,
    LocationEvent,
    LocationEventType,
    Task,
    TaskLocationConstraint,
    TaskStatus,
)
from fieldtrack.sinks import MemorySink


@pytest.fixture
def coord():
    c = FieldTaskCoordinator(
        params=EventParams(exit_grace_seconds=60, movement_threshold_m=0),
        event_sink=MemorySink(),
        alert_sink=MemorySink(),
        audit_sink=MemorySink(),
        movement_sink=MemorySink(),
    )
    c.timing.register(Task(task_id="t1", assigned_to="u1"))
    c.generator.assign(
        "u1",
        TaskLocationConstraint(
            constraint_id="c1",
            task_id="t1",
            location=InlineCircle(center_lat=CENTER_LAT, center_lon=CENTER_LON, radius_m=100),
            departure_required=True,
        ),
    )
    return c


class TestFieldTaskCoordinator:
    def test_workday(self, coord, make_sample):
        sub = coord.channel.subscribe()
        samples = [
            make_sample(500, T0),
            make_sample(20, T0 + 10 * MINUTE),
            make_sample(30, T0 + 2 * HOUR),
            make_sample(400, T0 + 3 * HOUR),
            make_sample(600, T0 + 3 * HOUR + 2 * MINUTE),
        ]
        coord.request_transition("t1", TaskStatus.IN_PROGRESS, T0 + 10 * MINUTE)
        summary = coord.ingest_batch(samples)

        kinds = [e.event_type for e in summary.events]
        assert kinds == [
            LocationEventType.ARRIVAL,
            LocationEventType.DEPARTURE,
            LocationEventType.BOUNDARY_VIOLATION,
        ]
        assert [a.alert_type for a in summary.alerts] == [
            AlertType.ARRIVAL,
            AlertType.DEPARTURE,
            AlertType.OUT_OF_BOUNDS,
        ]
        assert summary.samples == 5
        assert summary.recorded == 5

        coord.request_transition("t1", TaskStatus.COMPLETED, T0 + 4 * HOUR)
        published = sub.drain()
        events = [r for r in published if isinstance(r, LocationEvent)]
        alerts = [r for r in published if isinstance(r, Alert)]
        assert len(events) == 3
        assert alerts[-1].alert_type is AlertType.TASK_COMPLETION

        assert len(coord._event_sink) == 3
        assert len(coord._alert_sink) == 4
        assert len(coord._movement_sink) == 5
        assert [e.action.value for e in coord.timing.audit_log("t1")] == ["start", "complete"]

    def test_event_is_stored_before_published(self, make_sample):
        order: list[str] = []
        channel = OutboundChannel()
        sub = channel.subscribe(lambda r: order.append("publish") is None)
        c = FieldTaskCoordinator(event_sink=lambda e: order.append("sink"), channel=channel)
        c.generator.assign(
            "u1",
            TaskLocationConstraint(
                constraint_id="c1",
                task_id="t1",
                location=InlineCircle(center_lat=CENTER_LAT, center_lon=CENTER_LON, radius_m=100),
            ),
        )
        c.ingest(make_sample(10, T0))
        # event then its arrival alert
        assert order == ["sink", "publish", "publish"]
        assert len(sub.drain()) == 2

    def test_batch_counters(self, coord, make_sample):
        summary = coord.ingest_batch(
            [
                make_sample(10, None),
                make_sample(10, T0, is_mock=True),
                make_sample(10, T0 + MINUTE),
            ]
        )
        assert (summary.samples, summary.rejected, summary.mock) == (3, 1, 1)
        assert [e.event_type for e in summary.events] == [LocationEventType.ARRIVAL]

    def test_manual_check_in_and_out(self, coord):
        kw = dict(task_id="t1", user_id="u1", latitude=CENTER_LAT, longitude=CENTER_LON)
        first = coord.check_in(at_ms=T0, **kw)
        second = coord.check_out(at_ms=T0 + HOUR, **kw)
        assert first.event_type is LocationEventType.CHECK_IN
        assert second.event_type is LocationEventType.CHECK_OUT
        assert len(coord._event_sink) == 2
        assert len(coord._alert_sink) == 0

    def test_emergency(self, coord):
        sub = coord.channel.subscribe(lambda r: isinstance(r, Alert))
        alert = coord.raise_emergency(user_id="u1", at_ms=T0, task_id="t1")
        assert sub.drain() == [alert]

    def test_audit_failure_raises_nothing_published(self):
        def broken(entry):
            raise OSError("read-only")

        c = FieldTaskCoordinator(audit_sink=broken)
        c.timing.register(Task(task_id="t1", assigned_to="u1"))
        sub = c.channel.subscribe()
        with pytest.raises(AuditWriteError):
            c.request_transition("t1", TaskStatus.IN_PROGRESS, T0)
        assert c.timing.get("t1").status is TaskStatus.NOT_STARTED
        assert sub.drain() == []

    def test_closed_channel_does_not_break_ingest(self, coord, make_sample):
        coord.channel.close()
        outcome = coord.ingest(make_sample(10, T0))
        assert [e.event_type for e in outcome.events] == [LocationEventType.ARRIVAL]
        assert len(coord._event_sink) == 1

    def test_repeated_emergency_is_emitted_once(self, coord):
        sub = coord.channel.subscribe(lambda r: isinstance(r, Alert))
        first = coord.raise_emergency(user_id="u1", at_ms=T0, source_id="sos-1")
        again = coord.raise_emergency(user_id="u1", at_ms=T0 + MINUTE, source_id="sos-1")

        assert first is not None
        assert again is None
        assert len(coord._alert_sink) == 1
        assert sub.drain() == [first]
        assert coord.dispatcher.alerts() == [first]

    def test_re_emitting_an_event_does_not_repeat_its_alert(self, coord, make_sample):
        outcome = coord.ingest(make_sample(10, T0))
        (arrival,) = outcome.events
        sub = coord.channel.subscribe()

        assert coord._emit_event(arrival) is None
        # the event itself is forwarded again, its alert is not
        assert sub.drain() == [arrival]
        assert len(coord._alert_sink) == 1

    def test_completion_alert_not_repeated_per_transition(self, coord):
        coord.request_transition("t1", TaskStatus.IN_PROGRESS, T0)
        result = coord.request_transition("t1", TaskStatus.COMPLETED, T0 + HOUR)
        assert coord.dispatcher.dispatch_transition(result, only_new=True) is None
        assert [a.alert_type for a in coord._alert_sink.items()] == [AlertType.TASK_COMPLETION]

    def test_movement_sink_gets_the_recorded_movement(self, make_sample):
        movements = MemorySink()
        c = FieldTaskCoordinator(params=EventParams(movement_threshold_m=10), movement_sink=movements)
        first = c.ingest(make_sample(0, T0))
        near = c.ingest(make_sample(3, T0 + MINUTE))
        far = c.ingest(make_sample(50, T0 + 2 * MINUTE))

        assert isinstance(first.movement, MovementRecord)
        assert near.movement is None
        assert movements.items() == [first.movement, far.movement]
        assert movements.items() == c.generator.movement_history("u1")

    def test_batch_alerts_match_published_alerts(self, coord, make_sample):
        sub = coord.channel.subscribe(lambda r: isinstance(r, Alert))
        summary = coord.ingest_batch([make_sample(500, T0), make_sample(10, T0 + MINUTE)])
        assert [a.alert_type for a in summary.alerts] == [AlertType.ARRIVAL]
        assert sub.drain() == summary.alerts
