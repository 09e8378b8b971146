"""Swiss Ephemeris provider tests. No data files needed: Moshier mode is built in."""

from datetime import datetime

import pytest
import pytz
import structlog
import swisseph as swe
from structlog.testing import capture_logs

import ephemeris
from ephemeris import HOUSE_SYSTEMS, PLANETS, SwissEphemeris, missing_ephemeris_files
from exceptions import InvalidInputError, ProviderUnavailableError
from natal import BirthInput, derive_chart, sign

J2000 = datetime(2000, 1, 1, 12, tzinfo=pytz.UTC)


@pytest.fixture
def provider(tmp_path):
    return SwissEphemeris(ephe_path=str(tmp_path))


def test_missing_files_fall_back_to_moshier(provider):
    assert provider.source == "moshier"
    assert provider.flags & swe.FLG_MOSEPH


def test_missing_files_listing(tmp_path):
    assert missing_ephemeris_files(None) == list(ephemeris.REQUIRED_FILES)
    (tmp_path / "seas_18.se1").write_bytes(b"")
    assert missing_ephemeris_files(str(tmp_path)) == ["semo_18.se1", "sepl_18.se1"]


def test_julian_day():
    assert SwissEphemeris.julian_day(J2000) == pytest.approx(2451545.0)
    assert SwissEphemeris.julian_day(datetime(2000, 1, 1, 12)) == pytest.approx(2451545.0)


def test_sun_longitude_at_j2000(provider):
    longitudes = provider.longitudes(J2000, 51.48, 0.0)
    assert set(longitudes) == set(PLANETS)
    assert longitudes["Sun"] == pytest.approx(280.37, abs=0.1)
    assert sign(longitudes["Sun"]) == "Capricorn"
    assert all(0 <= v < 360 for v in longitudes.values())


def test_twelve_cusps(provider):
    cusps = provider.cusps(J2000, 51.48, 0.0)
    assert len(cusps) == 12


def test_whole_sign_cusps_start_on_sign_boundaries(provider):
    cusps = provider.cusps(J2000, 51.48, 0.0, "Whole Sign")
    for cusp in cusps:
        rest = cusp % 30
        assert min(rest, 30 - rest) < 1e-6


def test_unknown_house_system(provider):
    with pytest.raises(InvalidInputError):
        provider.cusps(J2000, 51.48, 0.0, "Vehlow")


def test_every_house_system_is_supported(provider):
    for name in HOUSE_SYSTEMS:
        assert len(provider.cusps(J2000, 40.0, -74.0, name)) == 12


def test_swisseph_error_is_provider_unavailable(provider, monkeypatch):
    def broken(*args, **kwargs):
        raise swe.Error("file not found")

    monkeypatch.setattr(ephemeris.swe, "calc_ut", broken)
    with pytest.raises(ProviderUnavailableError):
        provider.longitudes(J2000, 0.0, 0.0)


def test_derive_with_real_ephemeris(provider):
    birth = BirthInput.from_form("2000-01-01", "12:00", 51.48, 0.0)
    chart = derive_chart(birth, provider)
    assert chart.source == "moshier"
    assert chart.planet("Sun").sign == "Capricorn"
    assert all(1 <= p.house <= 12 for p in chart.planets)


@pytest.fixture
def captured_logs(monkeypatch):
    with capture_logs() as logs:
        # A fresh logger so earlier cached configuration does not bypass the capture
        monkeypatch.setattr(ephemeris, "log", structlog.get_logger("ephemeris"))
        yield logs


@pytest.fixture
def files_present(tmp_path):
    for name in ephemeris.REQUIRED_FILES:
        (tmp_path / name).write_bytes(b"")
    return str(tmp_path)


def test_missing_files_are_logged(tmp_path, captured_logs):
    SwissEphemeris(ephe_path=str(tmp_path))
    warnings = [e for e in captured_logs if e["event"] == "ephemeris_files_missing"]
    assert len(warnings) == 1
    assert warnings[0]["log_level"] == "warning"
    assert warnings[0]["fallback"] == "moshier"
    assert warnings[0]["missing"] == list(ephemeris.REQUIRED_FILES)


def test_files_present_use_swiss_ephemeris(files_present, captured_logs):
    provider = SwissEphemeris(ephe_path=files_present)
    assert provider.source == "swiss"
    assert provider.flags & swe.FLG_SWIEPH
    assert not [e for e in captured_logs if e["event"] == "ephemeris_files_missing"]


def test_per_call_moshier_fallback_is_logged(files_present, captured_logs, monkeypatch):
    provider = SwissEphemeris(ephe_path=files_present)
    monkeypatch.setattr(
        ephemeris.swe, "calc_ut",
        lambda jd, body, flags: ((123.0, 0.0, 1.0, 0.5, 0.0, 0.0), swe.FLG_MOSEPH | swe.FLG_SPEED),
    )
    longitudes = provider.longitudes(J2000, 0.0, 0.0)
    assert longitudes["Sun"] == 123.0

    degraded = [e for e in captured_logs if e["event"] == "ephemeris_degraded"]
    assert [e["body"] for e in degraded] == list(PLANETS)
    assert all(e["fallback"] == "moshier" and e["log_level"] == "warning" for e in degraded)


def test_positions_report_speed(provider):
    positions = provider.positions(J2000, 51.48, 0.0)
    lon, speed = positions["Sun"]
    assert lon == pytest.approx(280.37, abs=0.1)
    assert speed == pytest.approx(1.02, abs=0.05)
    assert positions["Moon"][1] > 10


def test_mars_retrograde_in_october_2020(provider):
    # Mars stationed retrograde on 2020-09-09 and direct on 2020-11-13
    birth = BirthInput.from_form("2020-10-13", "12:00", 51.48, 0.0)
    chart = derive_chart(birth, provider)
    assert chart.planet("Mars").retrograde
    assert chart.planet("Mars").speed < 0
    assert not chart.planet("Sun").retrograde
    assert not chart.planet("Moon").retrograde


def test_polar_latitude_falls_back_to_porphyry(provider, captured_logs):
    cusps, used = provider.houses(J2000, 70.0, 25.0, "Placidus")
    assert used == "Porphyry"
    assert len(cusps) == 12
    assert cusps == provider.houses(J2000, 70.0, 25.0, "Porphyry")[0]

    fallback = [e for e in captured_logs if e["event"] == "house_system_fallback"]
    assert fallback[0]["requested"] == "Placidus"
    assert fallback[0]["fallback"] == "Porphyry"


def test_polar_latitude_keeps_systems_that_work_there(provider):
    for name in ("Equal", "Whole Sign", "Porphyry", "Regiomontanus", "Campanus"):
        assert provider.houses(J2000, 70.0, 25.0, name)[1] == name


def test_temperate_latitude_keeps_placidus(provider):
    assert provider.houses(J2000, 51.48, 0.0, "Placidus")[1] == "Placidus"


def test_house_failure_outside_quadrant_systems_is_provider_unavailable(provider, monkeypatch):
    def broken(*args, **kwargs):
        raise swe.Error("swisseph.houses_ex: error")

    monkeypatch.setattr(ephemeris.swe, "houses_ex", broken)
    with pytest.raises(ProviderUnavailableError):
        provider.houses(J2000, 51.48, 0.0, "Equal")
    # the fallback system failing too is not hidden either
    with pytest.raises(ProviderUnavailableError):
        provider.houses(J2000, 51.48, 0.0, "Koch")


def test_polar_chart_records_house_system_used(provider):
    birth = BirthInput.from_form("1990-06-15", "14:30", 69.65, 18.96, "Europe/Oslo")
    chart = derive_chart(birth, provider, house_system="Placidus")
    assert chart.house_system == "Porphyry"
    assert len(chart.houses) == 12
    assert all(1 <= p.house <= 12 for p in chart.planets)
