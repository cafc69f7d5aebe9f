from __future__ import annotations

import pytest

from fieldtrack.geo import EARTH_RADIUS_M
from fieldtrack.models import PositionSample

import math

CENTER_LAT = 31.2304
CENTER_LON = 121.4737
# meters per degree of latitude along a meridian
M_PER_DEG_LAT = EARTH_RADIUS_M * math.pi / 180.0

T0 = 1_735_689_600_000  # 2025-01-01 00:00:00 UTC
MINUTE = 60_000
HOUR = 60 * MINUTE


def north_of(meters: float, lat: float = CENTER_LAT) -> float:
    """Latitude ``meters`` north of ``lat`` (same longitude)."""

    return lat + meters / M_PER_DEG_LAT


@pytest.fixture
def make_sample():
    """Factory: sample ``meters`` north of the test center at ``t`` ms."""

    def _make(
        meters: float,
        t: int | None,
        *,
        user_id: str = "u1",
        is_mock: bool = False,
        lon: float = CENTER_LON,
    ) -> PositionSample:
        return PositionSample(
            user_id=user_id,
            latitude=north_of(meters),
            longitude=lon,
            captured_at_ms=t,
            is_mock=is_mock,
        )

    return _make
