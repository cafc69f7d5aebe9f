"""In-memory geofence directory."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Iterable

from fieldtrack.errors import UnknownGeofenceError, ValidationError
from fieldtrack.models import Geofence, GeofenceRef, InlineCircle, LocationRef

logger = logging.getLogger(__name__)


class GeofenceDirectory:
    """Geofences by id.

    ``get`` also resolves deactivated geofences: existing task constraints keep working after
    an administrator soft-deletes the geofence they point to. ``active`` lists only the live ones.
    """

    def __init__(self, geofences: Iterable[Geofence] = ()) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, Geofence] = {}
        for g in geofences:
            self.add(g)

    def add(self, geofence: Geofence) -> Geofence:
        with self._lock:
            if geofence.geofence_id in self._by_id:
                raise ValidationError(f"围栏已存在：{geofence.geofence_id!r}")
            self._by_id[geofence.geofence_id] = geofence
        return geofence

    def update(self, geofence_id: str, /, **changes: Any) -> Geofence:
        """Replace fields of an existing geofence; the new value is validated as a whole."""

        if "geofence_id" in changes:
            raise ValidationError("不能修改 geofence_id")
        with self._lock:
            current = self._require(geofence_id)
            updated = replace(current, **changes)
            self._by_id[geofence_id] = updated
        return updated

    def deactivate(self, geofence_id: str) -> Geofence:
        """Soft delete."""

        updated = self.update(geofence_id, is_active=False)
        logger.info("围栏已停用：%s", geofence_id)
        return updated

    def get(self, geofence_id: str) -> Geofence:
        with self._lock:
            return self._require(geofence_id)

    def active(self) -> list[Geofence]:
        with self._lock:
            return [g for g in self._by_id.values() if g.is_active]

    def resolve(self, location: LocationRef) -> Geofence | InlineCircle:
        """Turn a constraint's location reference into something with a center and a radius."""

        if isinstance(location, GeofenceRef):
            return self.get(location.geofence_id)
        return location

    def _require(self, geofence_id: str) -> Geofence:
        try:
            return self._by_id[geofence_id]
        except KeyError:
            raise UnknownGeofenceError(f"未知围栏：{geofence_id!r}") from None
