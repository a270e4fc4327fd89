"""
Kinematic Estimator

Dead reckoning between reports. The step is a flat-earth approximation that
adds the travelled distance straight onto latitude and longitude (no degree
conversion, no cos(latitude) correction, no great-circle math). It only keeps
a display moving between reports and is not navigational grade.
"""
import math
from datetime import datetime

from fleetwatch.errors import InvariantViolation
from fleetwatch.models.vessel import Position, VesselState

SECONDS_PER_HOUR = 3600.0


def _check_angle(vessel: VesselState, field: str):
    value = getattr(vessel, field)
    if not (math.isfinite(value) and 0 <= value < 360):
        raise InvariantViolation(f"Vessel {vessel.id} has {field}={value} outside [0, 360)")


def _wrap_longitude(lon: float) -> float:
    return ((lon + 180.0) % 360.0) - 180.0


def advance(vessel: VesselState, now: datetime) -> VesselState:
    """Return the vessel moved along its course from last_estimate_at to now.

    Stopped vessels keep their position exactly. last_estimate_at always moves to
    now (never backwards) so the next elapsed interval stays bounded.
    """
    _check_angle(vessel, "course_over_ground")
    _check_angle(vessel, "heading")

    if now <= vessel.last_estimate_at:
        return vessel

    if vessel.speed_over_ground <= 0:
        return vessel.model_copy(update={"last_estimate_at": now})

    elapsed = (now - vessel.last_estimate_at).total_seconds()
    distance = vessel.speed_over_ground * elapsed / SECONDS_PER_HOUR
    course = math.radians(vessel.course_over_ground)
    delta_lat = distance * math.cos(course)
    delta_lon = distance * math.sin(course)

    lat = max(-90.0, min(90.0, vessel.position.latitude + delta_lat))
    lon = _wrap_longitude(vessel.position.longitude + delta_lon)

    return vessel.model_copy(update={
        "position": Position(latitude=lat, longitude=lon),
        "last_estimate_at": now,
    })


def distance_nm(a: Position, b: Position) -> float:
    """Planar distance in the units advance() steps in; one degree counts as one nautical mile"""
    return math.hypot(b.latitude - a.latitude, b.longitude - a.longitude)
