"""
Vessel Data Model
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class NavStatus(str, Enum):
    """Navigational status as tracked by the engine"""
    UNDERWAY = "UNDERWAY"
    ANCHORED = "ANCHORED"
    MOORED = "MOORED"
    AGROUND = "AGROUND"
    UNKNOWN = "UNKNOWN"

    @property
    def is_stationary(self) -> bool:
        return self in (NavStatus.ANCHORED, NavStatus.MOORED)


# AIS navigational status code -> NavStatus
AIS_NAV_STATUS = {
    0: NavStatus.UNDERWAY,  # Under way using engine
    1: NavStatus.ANCHORED,  # At anchor
    2: NavStatus.UNDERWAY,  # Not under command
    3: NavStatus.UNDERWAY,  # Restricted manoeuvrability
    4: NavStatus.UNDERWAY,  # Constrained by draught
    5: NavStatus.MOORED,
    6: NavStatus.AGROUND,
    7: NavStatus.UNDERWAY,  # Engaged in fishing
    8: NavStatus.UNDERWAY,  # Under way sailing
}


class Position(BaseModel):
    """Latitude/longitude in signed degrees"""
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float


class PositionReport(BaseModel):
    """Incoming AIS-style position report.

    Field types are coerced here, ranges are checked by the store so that a
    malformed report can still be represented and rejected with InvalidReport.
    """
    model_config = ConfigDict(frozen=True)

    vessel_id: str
    latitude: float
    longitude: float
    speed_over_ground: float = 0.0  # Knots
    course_over_ground: float = 0.0  # Degrees
    heading: float = 0.0  # Degrees
    status: NavStatus = NavStatus.UNKNOWN
    timestamp: datetime
    name: Optional[str] = None
    ship_type: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class VesselState(BaseModel):
    """Authoritative per-vessel state.

    Instances are never mutated; every update swaps in a new record so a
    reader always sees one consistent version.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    position: Position
    speed_over_ground: float
    course_over_ground: float
    heading: float
    status: NavStatus = NavStatus.UNKNOWN
    last_report_at: datetime
    last_estimate_at: datetime
    anchored_since: Optional[datetime] = None

    # Last reported position, the origin for dead reckoning
    reported_position: Position
    name: Optional[str] = None
    ship_type: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or f"Vessel {self.id}"

    @property
    def is_moving(self) -> bool:
        return self.speed_over_ground > 0
