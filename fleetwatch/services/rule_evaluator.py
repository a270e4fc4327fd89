"""
Rule Evaluator
Stateful detectors over vessel state; raises and clears alerts on edges
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from fleetwatch.models.alert import Alert, AlertKind, make_dedupe_key
from fleetwatch.models.geofence import Geofence
from fleetwatch.models.vessel import VesselState
from fleetwatch.schemas import FleetConfig
from fleetwatch.services.alert_ledger import AlertLedger

logger = logging.getLogger(__name__)


class Detector:
    """One alert condition, evaluated per vessel"""

    kind: AlertKind

    def observe_report(self, vessel: VesselState):
        """Called once for every accepted real report"""

    def is_active(self, vessel: VesselState, now: datetime) -> bool:
        raise NotImplementedError

    def describe(self, vessel: VesselState, now: datetime) -> str:
        raise NotImplementedError

    def forget(self, vessel_id: str):
        """Drop any per-vessel history"""


class GeofenceDetector(Detector):
    kind = AlertKind.GEOFENCE_BREACH

    def __init__(self, geofences: Iterable[Geofence]):
        self.geofences = list(geofences)

    def containing(self, vessel: VesselState) -> List[Geofence]:
        return [g for g in self.geofences if g.contains(vessel.position)]

    def is_active(self, vessel, now):
        return any(g.contains(vessel.position) for g in self.geofences)

    def describe(self, vessel, now):
        names = ", ".join(g.name for g in self.containing(vessel))
        return f"{vessel.display_name} entered restricted zone {names}"


class AnchoredTooLongDetector(Detector):
    kind = AlertKind.ANCHORED_TOO_LONG

    def __init__(self, threshold: timedelta):
        self.threshold = threshold

    def is_active(self, vessel, now):
        if not vessel.status.is_stationary or vessel.anchored_since is None:
            return False
        return now - vessel.anchored_since >= self.threshold

    def describe(self, vessel, now):
        hours = (now - vessel.anchored_since).total_seconds() / 3600
        limit = self.threshold.total_seconds() / 3600
        state = vessel.status.value.lower()
        return f"{vessel.display_name} {state} for {hours:.1f}h (>{limit:g}h)"


@dataclass
class _SpeedJump:
    previous: float
    current: float
    seconds: float


class SpeedAnomalyDetector(Detector):
    """Flags implausible jumps between consecutive reported speeds.

    Only real reports are compared; dead-reckoned ticks never change speed. The
    condition holds until the next report shows a plausible change.
    """
    kind = AlertKind.SPEED_ANOMALY

    def __init__(self, delta_knots: float, window: timedelta, ratio: Optional[float] = None):
        self.delta_knots = delta_knots
        self.window = window
        self.ratio = ratio
        self._last: Dict[str, Tuple[float, datetime]] = {}
        self._jumps: Dict[str, _SpeedJump] = {}

    def _is_jump(self, previous: float, current: float) -> bool:
        change = abs(current - previous)
        if change > self.delta_knots:
            return True
        if self.ratio is not None and previous > 0:
            return change / previous > self.ratio
        return False

    def observe_report(self, vessel):
        prior = self._last.get(vessel.id)
        self._last[vessel.id] = (vessel.speed_over_ground, vessel.last_report_at)
        self._jumps.pop(vessel.id, None)
        if prior is None:
            return

        previous, previous_at = prior
        elapsed = vessel.last_report_at - previous_at
        if elapsed <= self.window and self._is_jump(previous, vessel.speed_over_ground):
            self._jumps[vessel.id] = _SpeedJump(previous, vessel.speed_over_ground, elapsed.total_seconds())

    def is_active(self, vessel, now):
        return vessel.id in self._jumps

    def describe(self, vessel, now):
        jump = self._jumps[vessel.id]
        return (
            f"{vessel.display_name} unusual speed pattern: "
            f"{jump.previous:.1f} → {jump.current:.1f} kn in {jump.seconds:.0f}s"
        )

    def forget(self, vessel_id):
        self._last.pop(vessel_id, None)
        self._jumps.pop(vessel_id, None)


@dataclass
class Evaluation:
    vessel_id: str
    raised: List[Alert] = field(default_factory=list)
    cleared: List[str] = field(default_factory=list)

    def __bool__(self):
        return bool(self.raised or self.cleared)


class RuleEvaluator:
    """Diffs detector output against the previously active set.

    The ledger is only called on edges: raise on false→true, clear on true→false.
    """

    def __init__(self, detectors: Iterable[Detector], ledger: AlertLedger):
        self.detectors = list(detectors)
        self.ledger = ledger
        self._active: Dict[str, Set[AlertKind]] = {}

    @classmethod
    def from_config(cls, config: FleetConfig, ledger: AlertLedger) -> "RuleEvaluator":
        return cls(
            [
                GeofenceDetector(config.geofences),
                AnchoredTooLongDetector(timedelta(seconds=config.anchored_too_long_threshold_seconds)),
                SpeedAnomalyDetector(
                    delta_knots=config.speed_anomaly_delta_knots,
                    window=timedelta(seconds=config.speed_anomaly_window_seconds),
                    ratio=config.speed_anomaly_ratio,
                ),
            ],
            ledger,
        )

    def observe_report(self, vessel: VesselState):
        for detector in self.detectors:
            detector.observe_report(vessel)

    def evaluate(self, vessel: VesselState, now: datetime) -> Evaluation:
        result = Evaluation(vessel.id)
        active = self._active.setdefault(vessel.id, set())

        for detector in self.detectors:
            condition = detector.is_active(vessel, now)
            was_active = detector.kind in active

            if condition and not was_active:
                alert = self.ledger.raise_alert(
                    vessel.id, detector.kind, detector.describe(vessel, now), now
                )
                # Only marked active once the ledger has the alert
                active.add(detector.kind)
                if alert is not None:
                    result.raised.append(alert)
            elif not condition and was_active:
                active.discard(detector.kind)
                if self.ledger.clear(vessel.id, detector.kind):
                    result.cleared.append(make_dedupe_key(vessel.id, detector.kind))

        return result

    def active_kinds(self, vessel_id: str) -> Set[AlertKind]:
        return set(self._active.get(vessel_id, ()))

    def forget(self, vessel_id: str) -> List[str]:
        """Drop a departed vessel's state and clear its open alerts"""
        for detector in self.detectors:
            detector.forget(vessel_id)
        cleared = []
        for kind in self._active.pop(vessel_id, set()):
            if self.ledger.clear(vessel_id, kind):
                cleared.append(make_dedupe_key(vessel_id, kind))
        return cleared

    def known_vessels(self) -> List[str]:
        return list(self._active.keys())
