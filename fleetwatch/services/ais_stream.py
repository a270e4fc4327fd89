"""
AIS Stream Ingest Client
Connects to AISStream.io, decodes position reports and feeds the fleet engine
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import websockets

from fleetwatch.errors import InvalidReport
from fleetwatch.models.vessel import AIS_NAV_STATUS, NavStatus, PositionReport
from fleetwatch.services.fleet_engine import FleetEngine

logger = logging.getLogger(__name__)

AISSTREAM_URL = "wss://stream.aisstream.io/v0/stream"

HEARTBEAT_POLL_SECONDS = 5.0
HEADING_NOT_AVAILABLE = 511
COURSE_NOT_AVAILABLE = 360.0


def _parse_time_utc(value: Optional[str]) -> Optional[datetime]:
    """AISStream sends e.g. '2024-05-01 12:34:56.123456789 +0000 UTC'"""
    if not value:
        return None
    try:
        return datetime.strptime(value[:19], "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _ship_type_label(type_code) -> Optional[str]:
    try:
        code = int(type_code)
    except (TypeError, ValueError):
        return None
    if 80 <= code <= 89:
        return "Tanker"
    if 70 <= code <= 79:
        return "Cargo"
    if 60 <= code <= 69:
        return "Passenger"
    if 30 <= code <= 39:
        return "Fishing"
    return f"Type {code}"


def parse_position_report(message: Dict, received_at: datetime) -> Optional[PositionReport]:
    """Map an AISStream PositionReport frame onto a PositionReport.

    Returns None for other message types. Range checks are left to the store.
    """
    if message.get("MessageType") != "PositionReport":
        return None

    meta = message.get("MetaData", {})
    ais = message.get("Message", {}).get("PositionReport", {})
    mmsi = meta.get("MMSI") or ais.get("UserID")
    if not mmsi:
        return None

    course = float(ais.get("Cog", 0) or 0)
    if course == COURSE_NOT_AVAILABLE:
        course = 0.0
    heading = ais.get("TrueHeading", HEADING_NOT_AVAILABLE)
    if heading is None or heading == HEADING_NOT_AVAILABLE:
        heading = course

    name = (meta.get("ShipName") or "").strip() or None

    return PositionReport(
        vessel_id=str(mmsi),
        latitude=ais.get("Latitude", meta.get("latitude")),
        longitude=ais.get("Longitude", meta.get("longitude")),
        speed_over_ground=ais.get("Sog", 0) or 0,
        course_over_ground=course,
        heading=heading,
        status=AIS_NAV_STATUS.get(ais.get("NavigationalStatus"), NavStatus.UNKNOWN),
        timestamp=_parse_time_utc(meta.get("time_utc")) or received_at,
        name=name,
    )


class AISStreamClient:
    """Upstream feed with reconnect-and-backoff, driving the connection lifecycle"""

    def __init__(
        self,
        api_key: str,
        engine: FleetEngine,
        bounding_boxes: Optional[List] = None,
        url: str = AISSTREAM_URL,
    ):
        self.api_key = api_key
        self.engine = engine
        self.bounding_boxes = bounding_boxes or [[[-90, -180], [90, 180]]]
        self.url = url
        self.ais_websocket = None
        self.is_running = False
        self.ship_types: Dict[str, str] = {}  # MMSI -> label from ShipStaticData
        self.rejected = 0

    @property
    def lifecycle(self):
        return self.engine.connection

    async def connect_to_aisstream(self) -> bool:
        """Open the socket and subscribe; success moves the lifecycle to CONNECTED"""
        try:
            logger.info("🔌 Connecting to AISStream.io...")
            self.ais_websocket = await websockets.connect(self.url)

            subscription = {
                "APIKey": self.api_key,
                "BoundingBoxes": self.bounding_boxes,
                "FilterMessageTypes": ["PositionReport", "ShipStaticData"],
            }
            await self.ais_websocket.send(json.dumps(subscription))
            logger.info("📡 Subscription sent to AISStream.io")

            self.lifecycle.mark_connected(self.engine.clock())
            return True

        except Exception as e:
            logger.error(f"❌ Failed to connect to AISStream: {e}")
            self.lifecycle.mark_disconnected(str(e), self.engine.clock())
            return False

    async def handle_message(self, raw) -> Optional[PositionReport]:
        """Decode one upstream frame and apply it; bad frames are logged and skipped"""
        now = self.engine.clock()
        self.lifecycle.record_message(now)
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse message: {e}")
            return None

        if message.get("MessageType") == "ShipStaticData":
            meta = message.get("MetaData", {})
            static = message.get("Message", {}).get("ShipStaticData", {})
            label = _ship_type_label(static.get("Type"))
            if meta.get("MMSI") and label:
                self.ship_types[str(meta["MMSI"])] = label
            return None

        try:
            report = parse_position_report(message, now)
        except (TypeError, ValueError) as e:
            logger.warning(f"Undecodable position report: {e}")
            self.rejected += 1
            return None
        if report is None:
            return None

        ship_type = self.ship_types.get(report.vessel_id)
        if ship_type:
            report = report.model_copy(update={"ship_type": ship_type})

        try:
            await self.engine.apply_report(report)
        except InvalidReport as e:
            self.rejected += 1
            logger.warning(f"Rejected report for {report.vessel_id}: {e}")
            return None
        return report

    async def forward_ais_data(self):
        """Consume frames until the socket closes or goes silent"""
        poll = min(self.lifecycle.heartbeat_timeout.total_seconds(), HEARTBEAT_POLL_SECONDS)
        try:
            while self.is_running:
                try:
                    raw = await asyncio.wait_for(self.ais_websocket.recv(), timeout=poll)
                except asyncio.TimeoutError:
                    if self.lifecycle.check_heartbeat(self.engine.clock()):
                        logger.warning("💤 AISStream went silent, reconnecting")
                        break
                    continue
                await self.handle_message(raw)

        except websockets.exceptions.ConnectionClosed:
            logger.warning("🔌 AISStream connection closed")
            self.lifecycle.mark_disconnected("connection closed", self.engine.clock())
        except Exception as e:
            logger.error(f"❌ Error forwarding AIS data: {e}")
            self.lifecycle.mark_disconnected(str(e), self.engine.clock())
        finally:
            await self._close_socket()

    async def start(self):
        """Run until stop(); upstream failures never escape this loop"""
        if self.is_running:
            logger.warning("AIS client already running")
            return

        self.is_running = True
        while self.is_running:
            if await self.connect_to_aisstream():
                await self.forward_ais_data()

            if not self.is_running:
                break
            delay = self.lifecycle.next_backoff()
            logger.info(f"🔄 Reconnecting in {delay:g} seconds...")
            await asyncio.sleep(delay)
            if self.is_running:
                self.lifecycle.begin_reconnect(self.engine.clock())

    async def stop(self):
        self.is_running = False
        await self._close_socket()
        self.lifecycle.mark_disconnected("stopped", self.engine.clock())
        logger.info("🛑 AIS client stopped")

    async def _close_socket(self):
        if self.ais_websocket is not None:
            try:
                await self.ais_websocket.close()
            except Exception as e:
                logger.debug(f"Error closing AISStream socket: {e}")
            self.ais_websocket = None
