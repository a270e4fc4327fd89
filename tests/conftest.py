from datetime import datetime, timedelta, timezone

import pytest

from fleetwatch.models.vessel import NavStatus, PositionReport

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_report(**overrides) -> PositionReport:
    fields = dict(
        vessel_id="123456789",
        latitude=25.7617,
        longitude=-80.1918,
        speed_over_ground=12.5,
        course_over_ground=45.0,
        heading=47.0,
        status=NavStatus.UNDERWAY,
        timestamp=T0,
        name="ATLANTIC PIONEER",
    )
    fields.update(overrides)
    return PositionReport(**fields)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
