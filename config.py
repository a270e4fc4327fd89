"""
FastAPI Application Configuration
"""
import os
from typing import List, Optional

from dotenv import load_dotenv

from fleetwatch.models.geofence import load_geofences
from fleetwatch.schemas import FleetConfig

load_dotenv()


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name, "").strip()
    return float(value) if value else None


class Settings:
    """Application Settings"""

    # Environment
    ENV = os.getenv("ENV", "development")
    DEBUG = ENV == "development"

    # API Configuration
    API_TITLE = "Fleetwatch API"
    API_VERSION = "1.0.0"
    API_DESCRIPTION = "Vessel state engine and operational alerts for fleet displays"

    # CORS Configuration
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5000").split(",")
    ]
    CORS_ALLOW_CREDENTIALS = True
    CORS_ALLOW_METHODS = ["*"]
    CORS_ALLOW_HEADERS = ["*"]

    # Server Configuration
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "5000"))

    # AIS Data Configuration
    AISSTREAM_API_KEY = os.getenv("AISSTREAM_API_KEY", "")

    # Upstream Connection
    HEARTBEAT_TIMEOUT_SECONDS = float(os.getenv("HEARTBEAT_TIMEOUT_SECONDS", "60"))
    RECONNECT_BACKOFF_SECONDS = float(os.getenv("RECONNECT_BACKOFF_SECONDS", "5"))
    RECONNECT_BACKOFF_MAX_SECONDS = float(os.getenv("RECONNECT_BACKOFF_MAX_SECONDS", "60"))

    # WebSocket Configuration
    WS_QUEUE_SIZE = int(os.getenv("WS_QUEUE_SIZE", "32"))

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Fleet Engine
    TICK_INTERVAL_SECONDS = float(os.getenv("TICK_INTERVAL_SECONDS", "2"))
    ANCHORED_TOO_LONG_THRESHOLD_SECONDS = float(os.getenv("ANCHORED_TOO_LONG_THRESHOLD_SECONDS", "86400"))
    SPEED_ANOMALY_DELTA_KNOTS = float(os.getenv("SPEED_ANOMALY_DELTA_KNOTS", "10"))
    SPEED_ANOMALY_RATIO = _optional_float("SPEED_ANOMALY_RATIO")
    SPEED_ANOMALY_WINDOW_SECONDS = float(os.getenv("SPEED_ANOMALY_WINDOW_SECONDS", "300"))
    STALE_VESSEL_MAX_AGE_SECONDS = float(os.getenv("STALE_VESSEL_MAX_AGE_SECONDS", "1800"))
    EVICTION_INTERVAL_SECONDS = float(os.getenv("EVICTION_INTERVAL_SECONDS", "60"))
    GEOFENCES_FILE = os.getenv("GEOFENCES_FILE", "")

    def fleet_config(self) -> FleetConfig:
        """Engine configuration built from the environment"""
        return FleetConfig(
            tick_interval_seconds=self.TICK_INTERVAL_SECONDS,
            anchored_too_long_threshold_seconds=self.ANCHORED_TOO_LONG_THRESHOLD_SECONDS,
            speed_anomaly_delta_knots=self.SPEED_ANOMALY_DELTA_KNOTS,
            speed_anomaly_ratio=self.SPEED_ANOMALY_RATIO,
            speed_anomaly_window_seconds=self.SPEED_ANOMALY_WINDOW_SECONDS,
            stale_vessel_max_age_seconds=self.STALE_VESSEL_MAX_AGE_SECONDS,
            eviction_interval_seconds=self.EVICTION_INTERVAL_SECONDS,
            geofences=load_geofences(self.GEOFENCES_FILE) if self.GEOFENCES_FILE else [],
        )


# Create settings instance
settings = Settings()
