import pytest

from natal import BirthInput
from storage import InMemoryChartRepo

SAMPLE_LONGITUDES = {
    "Sun": 10.0,
    "Moon": 190.0,
    "Mercury": 25.0,
    "Venus": 70.0,
    "Mars": 100.0,
    "Jupiter": 250.0,
    "Saturn": 300.0,
    "Uranus": 335.0,
    "Neptune": 160.0,
    "Pluto": 45.0,
}


SAMPLE_SPEEDS = {
    "Sun": 0.9856,
    "Moon": 13.2,
    "Mercury": -0.6,
    "Venus": 1.2,
    "Mars": 0.5,
    "Jupiter": 0.08,
    "Saturn": -0.03,
    "Uranus": 0.04,
    "Neptune": 0.02,
    "Pluto": 0.01,
}


class FakeEphemeris:
    """Deterministic provider: fixed longitudes and equal houses from a given ascendant."""

    source = "fake"

    def __init__(self, longitudes=None, ascendant=100.0):
        self._longitudes = dict(longitudes or SAMPLE_LONGITUDES)
        self.ascendant = ascendant
        self.calls = []

    def longitudes(self, timestamp, lat, lon):
        self.calls.append(("longitudes", timestamp, lat, lon))
        return dict(self._longitudes)

    def cusps(self, timestamp, lat, lon, house_system="Placidus"):
        self.calls.append(("cusps", timestamp, lat, lon, house_system))
        return [(self.ascendant + 30 * i) % 360 for i in range(12)]


class MovingEphemeris(FakeEphemeris):
    """Fake provider that also reports daily motion; Mercury is retrograde."""

    def __init__(self, longitudes=None, ascendant=100.0, speeds=None):
        super().__init__(longitudes, ascendant)
        self._speeds = dict(speeds or SAMPLE_SPEEDS)

    def positions(self, timestamp, lat, lon):
        self.calls.append(("positions", timestamp, lat, lon))
        return {name: (longitude, self._speeds.get(name, 0.0))
                for name, longitude in self._longitudes.items()}


class PolarEphemeris(FakeEphemeris):
    """Provider that reports computing the cusps with another house system."""

    def houses(self, timestamp, lat, lon, house_system="Placidus"):
        self.calls.append(("houses", timestamp, lat, lon, house_system))
        return self.cusps(timestamp, lat, lon, house_system), "Porphyry"

class FailingEphemeris:
    source = "fake"

    def longitudes(self, timestamp, lat, lon):
        raise OSError("ephemeris file unreadable")

    def cusps(self, timestamp, lat, lon, house_system="Placidus"):
        raise OSError("ephemeris file unreadable")


@pytest.fixture
def fake_ephemeris():
    return FakeEphemeris()


@pytest.fixture
def birth():
    return BirthInput.from_form(
        birth_date="1990-06-15",
        birth_time="14:30",
        latitude=40.7128,
        longitude=-74.0060,
        timezone="America/New_York",
        name="Ada",
        place="New York, USA",
    )


@pytest.fixture
def chart_repo():
    return InMemoryChartRepo()


@pytest.fixture
def client(fake_ephemeris, chart_repo):
    from fastapi.testclient import TestClient

    from dependencies import get_chart_repo, get_ephemeris
    from main import app

    app.dependency_overrides[get_ephemeris] = lambda: fake_ephemeris
    app.dependency_overrides[get_chart_repo] = lambda: chart_repo
    yield TestClient(app)
    app.dependency_overrides.clear()
