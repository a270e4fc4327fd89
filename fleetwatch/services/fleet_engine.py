"""
Fleet Engine
Wires the store, estimator, detectors, ledger and connection state together
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from fleetwatch.models.vessel import PositionReport, VesselState
from fleetwatch.schemas import AlertFilter, FleetConfig, FleetDelta, FleetSnapshot
from fleetwatch.services import kinematics
from fleetwatch.services.alert_ledger import AlertLedger
from fleetwatch.services.connection import ConnectionLifecycle, utcnow
from fleetwatch.services.rule_evaluator import Evaluation, RuleEvaluator
from fleetwatch.services.vessel_store import VesselStore

logger = logging.getLogger(__name__)

Listener = Callable[[dict], None]


class FleetEngine:
    """Report ingestion, periodic dead reckoning and alert derivation.

    Listeners receive plain dict messages ("snapshot" or "vessel_update") and are
    called synchronously; they must not block. Slow consumers coalesce on their
    side, the engine never waits for them.
    """

    def __init__(
        self,
        config: Optional[FleetConfig] = None,
        store: Optional[VesselStore] = None,
        ledger: Optional[AlertLedger] = None,
        evaluator: Optional[RuleEvaluator] = None,
        connection: Optional[ConnectionLifecycle] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or FleetConfig()
        self.store = store or VesselStore()
        self.ledger = ledger or AlertLedger()
        self.evaluator = evaluator or RuleEvaluator.from_config(self.config, self.ledger)
        self.connection = connection or ConnectionLifecycle(clock=clock)
        self.clock = clock
        self._listeners: List[Listener] = []

    # ==================== INGESTION ====================

    async def apply_report(self, report: PositionReport) -> VesselState:
        """Sole ingestion entrypoint; raises InvalidReport without mutating anything"""
        vessel = await self.store.apply_report(report)
        now = self.clock()
        # No await between the store update and evaluation: detectors see this exact record
        self.evaluator.observe_report(vessel)
        evaluation = self._evaluate(vessel, max(now, vessel.last_report_at))
        self.connection.record_update(now)

        self._publish({
            "type": "vessel_update",
            "data": self._delta(vessel, evaluation).model_dump(mode="json"),
        })
        return vessel

    # ==================== PERIODIC WORK ====================

    async def tick(self, now: Optional[datetime] = None) -> int:
        """Advance every moving vessel and re-evaluate all rules; returns vessels advanced"""
        now = now or self.clock()
        results = await asyncio.gather(*(self._tick_vessel(vid, now) for vid in self.store.ids()))
        advanced = sum(1 for moved in results if moved)

        self._publish({"type": "snapshot", "data": self.snapshot(now).model_dump(mode="json")})
        return advanced

    async def _tick_vessel(self, vessel_id: str, now: datetime) -> bool:
        try:
            vessel = self.store.get(vessel_id)
        except KeyError:
            return False  # evicted since ids() was read

        moved = vessel.is_moving
        if moved:
            try:
                vessel = await self.store.update(vessel_id, lambda v: kinematics.advance(v, now))
            except KeyError:
                return False
        self._evaluate(vessel, now)
        return moved

    async def evict_stale(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        removed = await self.store.evict_stale(now, timedelta(seconds=self.config.stale_vessel_max_age_seconds))
        if removed:
            remaining = set(self.store.ids())
            for vessel_id in self.evaluator.known_vessels():
                if vessel_id not in remaining:
                    self.evaluator.forget(vessel_id)
        return removed

    # ==================== EVALUATION ====================

    def _evaluate(self, vessel: VesselState, now: datetime) -> Evaluation:
        try:
            return self.evaluator.evaluate(vessel, now)
        except Exception:
            logger.exception(f"Rule evaluation failed for vessel {vessel.id}")
            return Evaluation(vessel.id)

    # ==================== EGRESS ====================

    def snapshot(self, now: Optional[datetime] = None) -> FleetSnapshot:
        vessels = self.store.all()
        status = self.connection.status()
        moving = sum(1 for v in vessels if v.is_moving)
        return FleetSnapshot(
            vessels=vessels,
            alerts=self.ledger.list_alerts(),
            connection_state=status.state,
            last_update_at=status.last_update_at,
            moving_count=moving,
            stationary_count=len(vessels) - moving,
            generated_at=now or self.clock(),
        )

    def list_alerts(self, filter: Optional[AlertFilter] = None):
        return self.ledger.list_alerts(filter)

    def _delta(self, vessel: VesselState, evaluation: Evaluation) -> FleetDelta:
        status = self.connection.status()
        return FleetDelta(
            vessel=vessel,
            raised=evaluation.raised,
            cleared=evaluation.cleared,
            connection_state=status.state,
            last_update_at=status.last_update_at,
        )

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, message: Dict):
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("Fleet listener failed")
