from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fleetwatch.models.alert import Alert, AlertKind
from fleetwatch.models.connection import ConnectionState
from fleetwatch.models.geofence import Geofence
from fleetwatch.models.vessel import NavStatus, VesselState


# Engine Configuration
class FleetConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    tick_interval_seconds: float = Field(default=2.0, gt=0)
    anchored_too_long_threshold_seconds: float = Field(default=86400.0, gt=0)
    speed_anomaly_delta_knots: float = Field(default=10.0, gt=0)
    speed_anomaly_ratio: Optional[float] = Field(default=None, gt=0)
    speed_anomaly_window_seconds: float = Field(default=300.0, gt=0)
    stale_vessel_max_age_seconds: float = Field(default=1800.0, gt=0)
    eviction_interval_seconds: float = Field(default=60.0, gt=0)
    geofences: List[Geofence] = Field(default_factory=list)


# Egress Schemas
class FleetSnapshot(BaseModel):
    vessels: List[VesselState]
    alerts: List[Alert]
    connection_state: ConnectionState
    last_update_at: Optional[datetime] = None
    moving_count: int = 0
    stationary_count: int = 0
    generated_at: datetime


class FleetDelta(BaseModel):
    vessel: VesselState
    raised: List[Alert] = Field(default_factory=list)
    cleared: List[str] = Field(default_factory=list)  # dedupe keys
    connection_state: ConnectionState
    last_update_at: Optional[datetime] = None


# Query Schemas
class AlertFilter(BaseModel):
    vessel_id: Optional[str] = None
    kind: Optional[AlertKind] = None
    open_only: bool = False
    limit: Optional[int] = Field(default=None, ge=1)


# Ingress Schema
class PositionReportIn(BaseModel):
    """Report body accepted over HTTP"""
    vessel_id: str
    latitude: float
    longitude: float
    speed_over_ground: float = 0.0
    course_over_ground: float = 0.0
    heading: float = 0.0
    status: NavStatus = NavStatus.UNKNOWN
    timestamp: Optional[datetime] = None
    name: Optional[str] = None
    ship_type: Optional[str] = None
