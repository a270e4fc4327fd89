"""
Connection Status Model
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ConnectionState(str, Enum):
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"


class ConnectionStatus(BaseModel):
    """Read-only view of the ingest channel's health"""
    model_config = ConfigDict(frozen=True)

    state: ConnectionState
    last_update_at: Optional[datetime] = None
    state_since: Optional[datetime] = None
    reconnect_attempts: int = 0
    last_error: Optional[str] = None
