import asyncio
import json
from datetime import timedelta

from conftest import T0, FakeClock
from fleetwatch.models.connection import ConnectionState
from fleetwatch.models.vessel import NavStatus
from fleetwatch.services import ais_stream
from fleetwatch.services.ais_stream import AISStreamClient, parse_position_report
from fleetwatch.services.connection import ConnectionLifecycle
from fleetwatch.services.fleet_engine import FleetEngine


def position_frame(mmsi=123456789, **fields):
    report = {
        "Latitude": 25.7617,
        "Longitude": -80.1918,
        "Sog": 12.5,
        "Cog": 45.0,
        "TrueHeading": 47,
        "NavigationalStatus": 0,
    }
    report.update(fields)
    return {
        "MessageType": "PositionReport",
        "MetaData": {"MMSI": mmsi, "ShipName": "ATLANTIC PIONEER   ", "time_utc": "2026-03-01 12:00:00.123456789 +0000 UTC"},
        "Message": {"PositionReport": report},
    }


def make_engine(clock=None):
    clock = clock or FakeClock()
    connection = ConnectionLifecycle(
        heartbeat_timeout=timedelta(seconds=1),
        backoff_initial=timedelta(milliseconds=10),
        backoff_max=timedelta(milliseconds=20),
        clock=clock,
    )
    return FleetEngine(connection=connection, clock=clock)


def test_parse_position_report():
    report = parse_position_report(position_frame(), T0 - timedelta(hours=1))
    assert report.vessel_id == "123456789"
    assert report.timestamp == T0
    assert report.status == NavStatus.UNDERWAY
    assert report.heading == 47
    assert report.name == "ATLANTIC PIONEER"


def test_parse_handles_not_available_sentinels():
    report = parse_position_report(position_frame(Cog=360, TrueHeading=511, NavigationalStatus=1), T0)
    assert report.course_over_ground == 0.0
    assert report.heading == 0.0
    assert report.status == NavStatus.ANCHORED


def test_parse_maps_unknown_status_codes():
    assert parse_position_report(position_frame(NavigationalStatus=15), T0).status == NavStatus.UNKNOWN
    assert parse_position_report(position_frame(NavigationalStatus=5), T0).status == NavStatus.MOORED


def test_parse_ignores_other_message_types():
    assert parse_position_report({"MessageType": "ShipStaticData"}, T0) is None


def test_handle_message_applies_reports_and_skips_bad_ones():
    engine = make_engine()
    client = AISStreamClient("key", engine)

    async def scenario():
        await client.handle_message(json.dumps({
            "MessageType": "ShipStaticData",
            "MetaData": {"MMSI": 123456789},
            "Message": {"ShipStaticData": {"Type": 84}},
        }))
        await client.handle_message(json.dumps(position_frame()))
        await client.handle_message(json.dumps(position_frame(mmsi=987654321, Latitude=95)))
        await client.handle_message("not json")

    asyncio.run(scenario())
    assert engine.store.ids() == ["123456789"]
    assert engine.store.get("123456789").ship_type == "Tanker"
    assert client.rejected == 1


def test_upstream_failures_are_retried_with_backoff(monkeypatch):
    engine = make_engine()
    client = AISStreamClient("key", engine)
    attempts = []

    async def refuse(url):
        attempts.append(url)
        raise OSError("connection refused")

    monkeypatch.setattr(ais_stream.websockets, "connect", refuse)

    async def scenario():
        task = asyncio.create_task(client.start())
        while len(attempts) < 3:
            await asyncio.sleep(0.01)
        await client.stop()
        await asyncio.wait_for(task, timeout=5)

    asyncio.run(scenario())
    assert len(attempts) >= 3
    assert engine.connection.state == ConnectionState.DISCONNECTED
    assert engine.connection.status().last_error


class FakeSocket:
    def __init__(self, frames):
        self.frames = list(frames)
        self.sent = []
        self.closed = False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        if self.frames:
            return self.frames.pop(0)
        raise OSError("stream ended")

    async def close(self):
        self.closed = True


def test_connect_subscribes_and_streams_until_failure(monkeypatch):
    engine = make_engine()
    client = AISStreamClient("secret", engine)
    socket = FakeSocket([json.dumps(position_frame())])

    async def connect(url):
        return socket

    monkeypatch.setattr(ais_stream.websockets, "connect", connect)

    async def scenario():
        client.is_running = True
        assert await client.connect_to_aisstream()
        assert engine.connection.state == ConnectionState.CONNECTED
        await client.forward_ais_data()

    asyncio.run(scenario())
    assert socket.sent[0]["APIKey"] == "secret"
    assert socket.closed
    assert engine.store.ids() == ["123456789"]
    assert engine.connection.state == ConnectionState.DISCONNECTED
    assert engine.connection.last_update_at is not None


class SilentSocket(FakeSocket):
    async def recv(self):
        await asyncio.sleep(3600)


def test_silent_stream_is_disconnected_by_heartbeat(monkeypatch):
    clock = FakeClock()
    engine = make_engine(clock)
    client = AISStreamClient("secret", engine)
    socket = SilentSocket([])

    async def connect(url):
        return socket

    monkeypatch.setattr(ais_stream.websockets, "connect", connect)

    async def scenario():
        client.is_running = True
        assert await client.connect_to_aisstream()
        clock.advance(5)
        await asyncio.wait_for(client.forward_ais_data(), timeout=5)

    asyncio.run(scenario())
    assert socket.closed
    assert engine.connection.state == ConnectionState.DISCONNECTED
    assert "no upstream traffic" in engine.connection.status().last_error
