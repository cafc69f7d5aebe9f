"""Distance and circle containment on a spherical earth."""

from __future__ import annotations

import math
from typing import Final, Protocol

EARTH_RADIUS_M: Final[float] = 6_371_000.0  # mean Earth radius in meters


class Circle(Protocol):
    """Anything with a center and a radius: a Geofence or an InlineCircle."""

    @property
    def center_lat(self) -> float: ...

    @property
    def center_lon(self) -> float: ...

    @property
    def radius_m(self) -> float: ...


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points given in decimal degrees.

    Symmetric in its two points, and 0.0 for identical points.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def is_inside_circle(
    lat: float,
    lon: float,
    center_lat: float,
    center_lon: float,
    radius_m: float,
) -> bool:
    """True when the point lies inside the circle or exactly on its edge."""

    return haversine_m(lat, lon, center_lat, center_lon) <= radius_m


def contains(lat: float, lon: float, circle: Circle) -> bool:
    """Boundary-inclusive containment against a Geofence or an InlineCircle."""

    return is_inside_circle(lat, lon, circle.center_lat, circle.center_lon, circle.radius_m)


def is_valid_coordinate(lat: float | None, lon: float | None) -> bool:
    """True for finite degrees within [-90, 90] x [-180, 180]."""

    if lat is None or lon is None:
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0
