import asyncio
import logging

import pytest
from fastapi.testclient import TestClient

import app as app_module
from conftest import FakeClock, make_report
from fleetwatch.errors import InvariantViolation
from fleetwatch.services.fleet_engine import FleetEngine
from fleetwatch.services.scheduler import Ticker


@pytest.fixture
def engine():
    return FleetEngine(clock=FakeClock())


@pytest.fixture
def client(engine, monkeypatch):
    # No lifespan: state is wired by hand
    monkeypatch.setattr(app_module.app.state, "engine", engine, raising=False)
    monkeypatch.setattr(app_module.app.state, "tickers", [], raising=False)
    return TestClient(app_module.app)


def run_kinematics_until_it_dies(engine):
    async def scenario():
        await engine.apply_report(make_report(vessel_id="111111111"))
        await engine.apply_report(make_report(vessel_id="222222222"))
        corrupted = engine.store.get("222222222").model_copy(update={"course_over_ground": 400.0})
        engine.store._vessels["222222222"] = corrupted
        engine.clock.advance(2)

        ticker = Ticker("kinematics", 0.01, engine.tick)
        task = asyncio.create_task(ticker.run())
        task.add_done_callback(app_module.watch_ticker(ticker))
        with pytest.raises(InvariantViolation):
            await asyncio.wait_for(task, timeout=5)
        return ticker

    return asyncio.run(scenario())


def test_health_is_ok_while_tickers_run(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["failed_tickers"] == []


def test_dead_kinematics_ticker_makes_health_fail(client, engine, caplog):
    with caplog.at_level(logging.CRITICAL, logger="app"):
        ticker = run_kinematics_until_it_dies(engine)

    assert not ticker.is_running
    assert isinstance(ticker.error, InvariantViolation)
    assert any("kinematics ticker died" in r.getMessage() for r in caplog.records)

    app_module.app.state.tickers = [ticker]
    response = client.get("/health")
    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"
    assert response.json()["failed_tickers"] == ["kinematics"]
