"""Route statistics over a worker's movement (distance, speed, stops, sampling)."""

from __future__ import annotations

import statistics
from dataclasses import dataclass
from typing import Final, Iterable, Sequence

from fieldtrack.events import validate_sample
from fieldtrack.geo import haversine_m
from fieldtrack.models import PositionSample

# A hop shorter than this, taking longer than STOP_MIN_GAP_MS, counts as a stop.
STOP_MAX_DISTANCE_M: Final[float] = 5.0
STOP_MIN_GAP_MS: Final[int] = 5 * 60 * 1000


@dataclass(frozen=True, slots=True)
class SamplingIntervals:
    """Gaps between consecutive samples, in seconds."""

    count: int
    min_s: float
    median_s: float
    p95_s: float
    max_s: float

    @classmethod
    def from_gaps_ms(cls, gaps_ms: Sequence[int]) -> SamplingIntervals | None:
        if not gaps_ms:
            return None
        gaps = sorted(g / 1000.0 for g in gaps_ms)
        return cls(
            count=len(gaps),
            min_s=gaps[0],
            median_s=statistics.median(gaps),
            # nearest-rank, lower side
            p95_s=gaps[int(0.95 * (len(gaps) - 1))],
            max_s=gaps[-1],
        )


@dataclass(frozen=True, slots=True)
class RouteStats:
    """Summary of one route."""

    samples: int
    total_distance_m: float
    total_time_s: float
    average_speed_kmh: float
    stops: int
    start_ms: int | None
    end_ms: int | None
    intervals: SamplingIntervals | None
    duplicate_timestamps: int
    min_lat: float | None
    max_lat: float | None
    min_lon: float | None
    max_lon: float | None


_EMPTY = RouteStats(
    samples=0,
    total_distance_m=0.0,
    total_time_s=0.0,
    average_speed_kmh=0.0,
    stops=0,
    start_ms=None,
    end_ms=None,
    intervals=None,
    duplicate_timestamps=0,
    min_lat=None,
    max_lat=None,
    min_lon=None,
    max_lon=None,
)


def route_statistics(samples: Iterable[PositionSample], include_mock: bool = False) -> RouteStats:
    """Compute route statistics over the valid samples, in capture-time order.

    Args:
        samples: Samples of one worker (can be unsorted).
        include_mock: Count mocked positions too.
    """

    pts = [s for s in samples if validate_sample(s) is None and (include_mock or not s.is_mock)]
    if not pts:
        return _EMPTY
    pts.sort(key=lambda s: s.captured_at_ms or 0)

    distance_m = 0.0
    stops = 0
    gaps_ms: list[int] = []
    for prev, cur in zip(pts, pts[1:]):
        hop_m = haversine_m(prev.latitude, prev.longitude, cur.latitude, cur.longitude)
        gap_ms = (cur.captured_at_ms or 0) - (prev.captured_at_ms or 0)
        distance_m += hop_m
        gaps_ms.append(gap_ms)
        if hop_m < STOP_MAX_DISTANCE_M and gap_ms > STOP_MIN_GAP_MS:
            stops += 1

    start_ms = pts[0].captured_at_ms
    end_ms = pts[-1].captured_at_ms
    elapsed_s = ((end_ms or 0) - (start_ms or 0)) / 1000.0
    return RouteStats(
        samples=len(pts),
        total_distance_m=distance_m,
        total_time_s=elapsed_s,
        average_speed_kmh=distance_m / elapsed_s * 3.6 if elapsed_s > 0 else 0.0,
        stops=stops,
        start_ms=start_ms,
        end_ms=end_ms,
        intervals=SamplingIntervals.from_gaps_ms(gaps_ms),
        duplicate_timestamps=gaps_ms.count(0),
        min_lat=min(p.latitude for p in pts),
        max_lat=max(p.latitude for p in pts),
        min_lon=min(p.longitude for p in pts),
        max_lon=max(p.longitude for p in pts),
    )


def group_by_user(samples: Iterable[PositionSample]) -> dict[str, list[PositionSample]]:
    out: dict[str, list[PositionSample]] = {}
    for s in samples:
        out.setdefault(s.user_id, []).append(s)
    return out
