"""
FastAPI Fleet Routes
Read-only views of the engine plus the HTTP ingestion entrypoint
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from fleetwatch.errors import InvalidReport, NotFound
from fleetwatch.models.alert import Alert, AlertKind
from fleetwatch.models.connection import ConnectionStatus
from fleetwatch.models.geofence import Geofence
from fleetwatch.models.vessel import PositionReport, VesselState
from fleetwatch.schemas import AlertFilter, FleetSnapshot, PositionReportIn
from fleetwatch.services.fleet_engine import FleetEngine

logger = logging.getLogger(__name__)

router = APIRouter()


def get_engine(request: Request) -> FleetEngine:
    return request.app.state.engine


# ==================== VESSELS ====================

@router.get("/vessels", response_model=List[VesselState])
async def list_vessels(engine: FleetEngine = Depends(get_engine)):
    """All tracked vessels at their current estimated positions"""
    return engine.store.all()


@router.get("/vessels/{vessel_id}", response_model=VesselState)
async def get_vessel(vessel_id: str, engine: FleetEngine = Depends(get_engine)):
    try:
        return engine.store.get(vessel_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/reports", response_model=VesselState)
async def submit_report(report_in: PositionReportIn, engine: FleetEngine = Depends(get_engine)):
    """
    Apply a position report

    Out-of-range fields are rejected with 422 and leave the store unchanged.
    """
    report = PositionReport(
        **report_in.model_dump(exclude={"timestamp"}),
        timestamp=report_in.timestamp or engine.clock(),
    )
    try:
        return await engine.apply_report(report)
    except InvalidReport as e:
        logger.warning(f"Rejected report for {report.vessel_id}: {e}")
        raise HTTPException(status_code=422, detail={"message": str(e), "field": e.field})


# ==================== ALERTS ====================

@router.get("/alerts", response_model=List[Alert])
async def list_alerts(
    vessel_id: Optional[str] = Query(None),
    kind: Optional[AlertKind] = Query(None),
    open_only: bool = Query(False),
    limit: Optional[int] = Query(None, ge=1),
    engine: FleetEngine = Depends(get_engine),
):
    """Alerts newest first"""
    return engine.list_alerts(AlertFilter(vessel_id=vessel_id, kind=kind, open_only=open_only, limit=limit))


@router.get("/alerts/{alert_id}", response_model=Alert)
async def get_alert(alert_id: int, engine: FleetEngine = Depends(get_engine)):
    try:
        return engine.ledger.get(alert_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


# ==================== FLEET ====================

@router.get("/geofences", response_model=List[Geofence])
async def list_geofences(engine: FleetEngine = Depends(get_engine)):
    return engine.config.geofences


@router.get("/status", response_model=ConnectionStatus)
async def get_status(engine: FleetEngine = Depends(get_engine)):
    """Upstream connection state and time of the last processed report"""
    return engine.connection.status()


@router.get("/snapshot", response_model=FleetSnapshot)
async def get_snapshot(engine: FleetEngine = Depends(get_engine)):
    return engine.snapshot()
