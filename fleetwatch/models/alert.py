"""
Alert Data Model
"""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, computed_field


class AlertKind(str, Enum):
    GEOFENCE_BREACH = "GEOFENCE_BREACH"
    ANCHORED_TOO_LONG = "ANCHORED_TOO_LONG"
    SPEED_ANOMALY = "SPEED_ANOMALY"


def make_dedupe_key(vessel_id: str, kind: AlertKind) -> str:
    return f"{vessel_id}:{AlertKind(kind).value}"


class Alert(BaseModel):
    """Operational alert, immutable once raised"""
    model_config = ConfigDict(frozen=True)

    id: int
    vessel_id: str
    kind: AlertKind
    message: str
    raised_at: datetime

    @computed_field
    @property
    def dedupe_key(self) -> str:
        return make_dedupe_key(self.vessel_id, self.kind)
