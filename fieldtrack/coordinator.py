"""Wiring of the engines: samples and status changes in; events and alerts out."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from fieldtrack.alerts import AlertDispatcher
from fieldtrack.channel import OutboundChannel
from fieldtrack.directory import GeofenceDirectory
from fieldtrack.events import EventParams, LocationEventGenerator, SampleOutcome
from fieldtrack.models import (
    Alert,
    LocationEvent,
    LocationEventType,
    PositionSample,
    TaskStatus,
    TimeLogEntry,
)
from fieldtrack.timing import TaskTimingEngine, TransitionResult

logger = logging.getLogger(__name__)

Sink = Callable[[Any], None]


@dataclass(slots=True)
class IngestSummary:
    """Counters for a batch of samples."""

    samples: int = 0
    rejected: int = 0
    mock: int = 0
    late: int = 0
    recorded: int = 0
    events: list[LocationEvent] = field(default_factory=list)
    alerts: list[Alert] = field(default_factory=list)


class FieldTaskCoordinator:
    """Owns one directory, generator, timing engine and dispatcher.

    Every derived record is first appended to its sink and then published on ``channel``.
    Sinks default to no-ops; pass ``sinks.JsonlSink`` or ``sinks.MemorySink`` instances to keep
    them. ``audit_sink`` is called inside the transition, so a failure there rolls the
    transition back (see ``TaskTimingEngine``).
    """

    def __init__(
        self,
        directory: GeofenceDirectory | None = None,
        params: EventParams | None = None,
        *,
        event_sink: Sink | None = None,
        alert_sink: Sink | None = None,
        audit_sink: Callable[[TimeLogEntry], None] | None = None,
        movement_sink: Sink | None = None,
        channel: OutboundChannel | None = None,
    ) -> None:
        self.directory = directory or GeofenceDirectory()
        self.timing = TaskTimingEngine(audit_sink=audit_sink)
        self.generator = LocationEventGenerator(self.directory, params, is_task_active=self.timing.is_active)
        self.dispatcher = AlertDispatcher()
        self.channel = channel or OutboundChannel()
        self._event_sink = event_sink
        self._alert_sink = alert_sink
        self._movement_sink = movement_sink

    def ingest(self, sample: PositionSample) -> SampleOutcome:
        outcome, _ = self._ingest(sample)
        return outcome

    def ingest_batch(self, samples: Iterable[PositionSample]) -> IngestSummary:
        """Reorder by capture time, then ingest one by one."""

        summary = IngestSummary()
        ordered = sorted(samples, key=lambda s: (s.captured_at_ms is None, s.captured_at_ms or 0))
        for sample in ordered:
            outcome, alerts = self._ingest(sample)
            summary.samples += 1
            if not outcome.accepted:
                summary.rejected += 1
                continue
            if sample.is_mock:
                summary.mock += 1
            if outcome.late_constraints:
                summary.late += 1
            if outcome.recorded:
                summary.recorded += 1
            summary.events.extend(outcome.events)
            summary.alerts.extend(alerts)
        return summary

    def check_in(self, **kwargs: Any) -> LocationEvent:
        return self._manual(LocationEventType.CHECK_IN, **kwargs)

    def check_out(self, **kwargs: Any) -> LocationEvent:
        return self._manual(LocationEventType.CHECK_OUT, **kwargs)

    def request_transition(
        self,
        task_id: str,
        target: TaskStatus,
        now_ms: int,
        *,
        expected_version: int | None = None,
        user_id: str | None = None,
    ) -> TransitionResult:
        result = self.timing.request_transition(
            task_id, target, now_ms, expected_version=expected_version, user_id=user_id
        )
        alert = self.dispatcher.dispatch_transition(result, only_new=True)
        if alert is not None:
            self._emit_alert(alert)
        return result

    def raise_emergency(self, **kwargs: Any) -> Alert | None:
        """Raise and emit an emergency alert.

        Returns None when ``source_id`` repeats an earlier emergency; nothing is emitted then.
        """

        alert = self.dispatcher.raise_emergency(only_new=True, **kwargs)
        if alert is not None:
            self._emit_alert(alert)
        return alert

    def _manual(self, event_type: LocationEventType, **kwargs: Any) -> LocationEvent:
        event = self.generator.record_manual(event_type=event_type, **kwargs)
        self._emit_event(event)
        return event

    def _ingest(self, sample: PositionSample) -> tuple[SampleOutcome, list[Alert]]:
        outcome = self.generator.process_sample(sample)
        if outcome.movement is not None and self._movement_sink is not None:
            self._movement_sink(outcome.movement)
        alerts = [a for a in map(self._emit_event, outcome.events) if a is not None]
        return outcome, alerts

    def _emit_event(self, event: LocationEvent) -> Alert | None:
        """Sink and publish ``event``, then any alert it newly raises."""

        if self._event_sink is not None:
            self._event_sink(event)
        self._publish(event)
        alert = self.dispatcher.dispatch_event(event, only_new=True)
        if alert is not None:
            self._emit_alert(alert)
        return alert

    def _emit_alert(self, alert: Alert) -> None:
        if self._alert_sink is not None:
            self._alert_sink(alert)
        self._publish(alert)

    def _publish(self, record: Any) -> None:
        if self.channel.closed:
            logger.debug("输出通道已关闭，未发布：%s", type(record).__name__)
            return
        self.channel.publish(record)
