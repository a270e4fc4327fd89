import asyncio
from datetime import timedelta

import pytest

from conftest import T0, make_report
from fleetwatch.models.alert import AlertKind
from fleetwatch.models.geofence import Geofence, point_in_polygon
from fleetwatch.models.vessel import NavStatus, Position
from fleetwatch.schemas import AlertFilter
from fleetwatch.services.alert_ledger import AlertLedger
from fleetwatch.services.rule_evaluator import (
    AnchoredTooLongDetector,
    GeofenceDetector,
    RuleEvaluator,
    SpeedAnomalyDetector,
)
from fleetwatch.services.vessel_store import VesselStore

SQUARE = ((0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0))
ZONE = Geofence(id="z1", name="Restricted Zone", polygon=SQUARE)


def vessel_from(**overrides):
    return asyncio.run(VesselStore().apply_report(make_report(**overrides)))


def test_point_in_polygon():
    assert point_in_polygon(0.5, 0.5, SQUARE)
    assert not point_in_polygon(1.5, 0.5, SQUARE)
    assert not point_in_polygon(-0.1, 0.5, SQUARE)


def test_points_on_edges_and_vertices_are_inside():
    assert ZONE.contains(Position(latitude=0.0, longitude=0.5))
    assert ZONE.contains(Position(latitude=1.0, longitude=0.25))
    assert ZONE.contains(Position(latitude=0.5, longitude=1.0))
    assert ZONE.contains(Position(latitude=1.0, longitude=1.0))


def test_geofence_raises_once_and_clears_on_exit():
    ledger = AlertLedger()
    evaluator = RuleEvaluator([GeofenceDetector([ZONE])], ledger)

    inside = vessel_from(latitude=0.5, longitude=0.5)
    first = evaluator.evaluate(inside, T0)
    assert [a.kind for a in first.raised] == [AlertKind.GEOFENCE_BREACH]
    assert "Restricted Zone" in first.raised[0].message
    assert "ATLANTIC PIONEER" in first.raised[0].message

    assert not evaluator.evaluate(inside, T0 + timedelta(seconds=2))

    outside = vessel_from(latitude=2.0, longitude=0.5)
    exit_ = evaluator.evaluate(outside, T0 + timedelta(seconds=4))
    assert exit_.cleared == ["123456789:GEOFENCE_BREACH"]

    again = evaluator.evaluate(inside, T0 + timedelta(seconds=6))
    assert again.raised[0].id != first.raised[0].id
    assert len(ledger.list_alerts()) == 2


def test_anchored_too_long_threshold():
    detector = AnchoredTooLongDetector(timedelta(hours=24))
    now = T0 + timedelta(hours=30)

    long_stay = vessel_from(status=NavStatus.ANCHORED, speed_over_ground=0, timestamp=now - timedelta(hours=25))
    short_stay = vessel_from(status=NavStatus.ANCHORED, speed_over_ground=0, timestamp=now - timedelta(hours=1))
    underway = vessel_from(status=NavStatus.UNDERWAY, timestamp=now - timedelta(hours=25))

    assert detector.is_active(long_stay, now)
    assert not detector.is_active(short_stay, now)
    assert not detector.is_active(underway, now)


def test_anchored_too_long_alert_present_and_absent():
    now = T0 + timedelta(hours=30)

    ledger = AlertLedger()
    evaluator = RuleEvaluator([AnchoredTooLongDetector(timedelta(hours=24))], ledger)
    moored = vessel_from(status=NavStatus.MOORED, speed_over_ground=0, timestamp=now - timedelta(hours=25))
    result = evaluator.evaluate(moored, now)
    assert [a.kind for a in result.raised] == [AlertKind.ANCHORED_TOO_LONG]
    assert "25.0h" in result.raised[0].message

    ledger = AlertLedger()
    evaluator = RuleEvaluator([AnchoredTooLongDetector(timedelta(hours=24))], ledger)
    recent = vessel_from(status=NavStatus.ANCHORED, speed_over_ground=0, timestamp=now - timedelta(hours=1))
    assert not evaluator.evaluate(recent, now)
    assert ledger.list_alerts() == []


def test_speed_anomaly_on_implausible_jump():
    detector = SpeedAnomalyDetector(delta_knots=10, window=timedelta(minutes=5))
    first = vessel_from(speed_over_ground=8)
    jump = vessel_from(speed_over_ground=25, timestamp=T0 + timedelta(seconds=10))
    steady = vessel_from(speed_over_ground=24, timestamp=T0 + timedelta(seconds=20))

    detector.observe_report(first)
    assert not detector.is_active(first, first.last_report_at)
    detector.observe_report(jump)
    assert detector.is_active(jump, jump.last_report_at)
    assert "8.0 → 25.0 kn" in detector.describe(jump, jump.last_report_at)
    detector.observe_report(steady)
    assert not detector.is_active(steady, steady.last_report_at)


def test_speed_change_outside_window_is_not_an_anomaly():
    detector = SpeedAnomalyDetector(delta_knots=10, window=timedelta(minutes=5))
    detector.observe_report(vessel_from(speed_over_ground=0))
    later = vessel_from(speed_over_ground=14, timestamp=T0 + timedelta(hours=2))
    detector.observe_report(later)
    assert not detector.is_active(later, later.last_report_at)


def test_speed_anomaly_ratio_threshold():
    detector = SpeedAnomalyDetector(delta_knots=50, window=timedelta(minutes=5), ratio=0.5)
    detector.observe_report(vessel_from(speed_over_ground=4))
    doubled = vessel_from(speed_over_ground=9, timestamp=T0 + timedelta(seconds=10))
    detector.observe_report(doubled)
    assert detector.is_active(doubled, doubled.last_report_at)


def test_forget_clears_open_alerts():
    ledger = AlertLedger()
    evaluator = RuleEvaluator([GeofenceDetector([ZONE])], ledger)
    evaluator.evaluate(vessel_from(latitude=0.5, longitude=0.5), T0)

    assert evaluator.forget("123456789") == ["123456789:GEOFENCE_BREACH"]
    assert ledger.list_alerts(AlertFilter(open_only=True)) == []
    assert evaluator.known_vessels() == []


def test_failed_describe_does_not_mark_the_condition_active(monkeypatch):
    ledger = AlertLedger()
    detector = GeofenceDetector([ZONE])
    evaluator = RuleEvaluator([detector], ledger)
    inside = vessel_from(latitude=0.5, longitude=0.5)

    def broken(vessel, now):
        raise ValueError("no name")

    monkeypatch.setattr(detector, "describe", broken)
    with pytest.raises(ValueError):
        evaluator.evaluate(inside, T0)
    assert evaluator.active_kinds(inside.id) == set()

    monkeypatch.undo()
    retry = evaluator.evaluate(inside, T0 + timedelta(seconds=2))
    assert [a.kind for a in retry.raised] == [AlertKind.GEOFENCE_BREACH]
