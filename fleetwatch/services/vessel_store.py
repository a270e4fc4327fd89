"""
Vessel Record Store
Authoritative per-vessel state keyed by vessel id
"""
import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, List

from fleetwatch.errors import InvalidReport, NotFound, StaleReport
from fleetwatch.models.vessel import Position, PositionReport, VesselState

logger = logging.getLogger(__name__)


def _check_range(report: PositionReport, field: str, low: float, high: float, high_inclusive: bool = True):
    value = getattr(report, field)
    if value is None or not math.isfinite(value):
        raise InvalidReport(f"{field} must be a finite number, got {value!r}", field, value)
    too_high = value > high if high_inclusive else value >= high
    if value < low or too_high:
        bound = "]" if high_inclusive else ")"
        raise InvalidReport(f"{field}={value} outside [{low}, {high}{bound}", field, value)


def validate_report(report: PositionReport):
    """Raise InvalidReport if any field is out of range"""
    if not report.vessel_id or not report.vessel_id.strip():
        raise InvalidReport("vessel_id is required", "vessel_id", report.vessel_id)
    _check_range(report, "latitude", -90, 90)
    _check_range(report, "longitude", -180, 180)
    _check_range(report, "speed_over_ground", 0, math.inf)
    _check_range(report, "course_over_ground", 0, 360, high_inclusive=False)
    _check_range(report, "heading", 0, 360, high_inclusive=False)


class VesselStore:
    """Keyed container of VesselState with per-vessel mutation locks.

    Records are replaced wholesale on every mutation, so get()/all() never see a
    half-applied update. Mutations of the same vessel are serialized by that
    vessel's lock; different vessels proceed independently.
    """

    def __init__(self):
        self._vessels: Dict[str, VesselState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, vessel_id: str) -> asyncio.Lock:
        lock = self._locks.get(vessel_id)
        if lock is None:
            lock = self._locks[vessel_id] = asyncio.Lock()
        return lock

    async def apply_report(self, report: PositionReport) -> VesselState:
        """Validate and apply a real position report"""
        validate_report(report)

        async with self._lock_for(report.vessel_id):
            previous = self._vessels.get(report.vessel_id)
            if previous is not None and report.timestamp < previous.last_report_at:
                raise StaleReport(
                    f"report for {report.vessel_id} at {report.timestamp.isoformat()} "
                    f"is older than {previous.last_report_at.isoformat()}",
                    "timestamp",
                    report.timestamp,
                )

            anchored_since = None
            if report.status.is_stationary:
                if previous is not None and previous.status.is_stationary and previous.anchored_since:
                    anchored_since = previous.anchored_since
                else:
                    anchored_since = report.timestamp

            position = Position(latitude=report.latitude, longitude=report.longitude)
            state = VesselState(
                id=report.vessel_id,
                position=position,
                reported_position=position,
                speed_over_ground=report.speed_over_ground,
                course_over_ground=report.course_over_ground,
                heading=report.heading,
                status=report.status,
                last_report_at=report.timestamp,
                last_estimate_at=report.timestamp,
                anchored_since=anchored_since,
                name=report.name or (previous.name if previous else None),
                ship_type=report.ship_type or (previous.ship_type if previous else None),
            )
            self._vessels[report.vessel_id] = state

        if previous is None:
            logger.debug(f"New vessel {report.vessel_id} at ({report.latitude}, {report.longitude})")
        return state

    async def update(self, vessel_id: str, fn: Callable[[VesselState], VesselState]) -> VesselState:
        """Read-modify-write a vessel under its lock; fn must not mutate its input"""
        async with self._lock_for(vessel_id):
            current = self._vessels.get(vessel_id)
            if current is None:
                raise NotFound(f"Vessel {vessel_id} not found")
            updated = fn(current)
            self._vessels[vessel_id] = updated
            return updated

    def get(self, vessel_id: str) -> VesselState:
        try:
            return self._vessels[vessel_id]
        except KeyError:
            raise NotFound(f"Vessel {vessel_id} not found") from None

    def all(self) -> List[VesselState]:
        return list(self._vessels.values())

    def ids(self) -> List[str]:
        return list(self._vessels.keys())

    def __len__(self) -> int:
        return len(self._vessels)

    def __contains__(self, vessel_id: str) -> bool:
        return vessel_id in self._vessels

    async def evict_stale(self, now: datetime, max_age: timedelta) -> int:
        """Remove vessels whose last real report is older than max_age"""
        cutoff = now - max_age
        removed = 0
        for vessel_id in self.ids():
            async with self._lock_for(vessel_id):
                vessel = self._vessels.get(vessel_id)
                if vessel is None or vessel.last_report_at >= cutoff:
                    continue
                del self._vessels[vessel_id]
                self._locks.pop(vessel_id, None)
                removed += 1

        if removed:
            logger.info(f"Evicted {removed} stale vessels (no report since {cutoff.isoformat()})")
        return removed
