"""Swiss Ephemeris provider for planetary longitudes and house cusps."""

import os
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import pytz
import structlog
import swisseph as swe

from exceptions import InvalidInputError, ProviderUnavailableError

log = structlog.get_logger(__name__)

REQUIRED_FILES = ("seas_18.se1", "semo_18.se1", "sepl_18.se1")

PLANETS = {
    "Sun": swe.SUN,
    "Moon": swe.MOON,
    "Mercury": swe.MERCURY,
    "Venus": swe.VENUS,
    "Mars": swe.MARS,
    "Jupiter": swe.JUPITER,
    "Saturn": swe.SATURN,
    "Uranus": swe.URANUS,
    "Neptune": swe.NEPTUNE,
    "Pluto": swe.PLUTO,
}

HOUSE_SYSTEMS = {
    "Placidus": b"P",
    "Koch": b"K",
    "Whole Sign": b"W",
    "Equal": b"E",
    "Porphyry": b"O",
    "Regiomontanus": b"R",
    "Campanus": b"C",
}

# Quadrant systems undefined above the polar circles, and their replacement there
POLAR_FALLBACK_SYSTEMS = frozenset({"Placidus", "Koch"})
POLAR_FALLBACK = "Porphyry"


def missing_ephemeris_files(ephe_path: Optional[str]) -> List[str]:
    if not ephe_path or not os.path.isdir(ephe_path):
        return list(REQUIRED_FILES)
    return [f for f in REQUIRED_FILES if not os.path.isfile(os.path.join(ephe_path, f))]


class SwissEphemeris:
    """
    Ephemeris provider backed by pyswisseph.

    Uses the Swiss Ephemeris data files when all of them are present in
    ``ephe_path``. Otherwise it falls back to the built-in Moshier ephemeris,
    which needs no files but is less precise; ``source`` reports which one
    is in use.
    """

    def __init__(self, ephe_path: Optional[str] = None):
        self.ephe_path = ephe_path
        missing = missing_ephemeris_files(ephe_path)
        if missing:
            log.warning(
                "ephemeris_files_missing",
                ephe_path=ephe_path,
                missing=missing,
                fallback="moshier",
            )
            self.source = "moshier"
        else:
            swe.set_ephe_path(ephe_path)
            self.source = "swiss"

    @property
    def flags(self) -> int:
        base = swe.FLG_MOSEPH if self.source == "moshier" else swe.FLG_SWIEPH
        return base | swe.FLG_SPEED

    @staticmethod
    def julian_day(timestamp: datetime) -> float:
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=pytz.UTC)
        dt = timestamp.astimezone(pytz.UTC)
        hour_decimal = dt.hour + dt.minute / 60.0 + dt.second / 3600.0 + dt.microsecond / 3600000000.0
        return swe.julday(dt.year, dt.month, dt.day, hour_decimal)

    def positions(self, timestamp: datetime, lat: float, lon: float) -> Dict[str, Tuple[float, float]]:
        """Geocentric tropical ``(longitude, speed)`` of the ten planets; speed in degrees per day."""
        jd = self.julian_day(timestamp)
        flags = self.flags
        result = {}
        for name, body_id in PLANETS.items():
            try:
                pos, retflag = swe.calc_ut(jd, body_id, flags)
            except swe.Error as e:
                raise ProviderUnavailableError(f"Swiss Ephemeris failed for {name}: {e}") from e
            if self.source == "swiss" and retflag & swe.FLG_MOSEPH:
                log.warning("ephemeris_degraded", body=name, julian_day=jd, fallback="moshier")
            result[name] = (pos[0], pos[3])
        return result

    def longitudes(self, timestamp: datetime, lat: float, lon: float) -> Dict[str, float]:
        return {name: pos[0] for name, pos in self.positions(timestamp, lat, lon).items()}

    def _houses(self, jd: float, lat: float, lon: float, house_system: str) -> List[float]:
        cusps_raw, _ascmc = swe.houses_ex(jd, lat, lon, HOUSE_SYSTEMS[house_system])
        # Older pyswisseph releases return 13 values with an unused index 0
        cusps = list(cusps_raw)
        if len(cusps) == 13:
            cusps = cusps[1:]
        return cusps

    def houses(self, timestamp: datetime, lat: float, lon: float,
               house_system: str = "Placidus") -> Tuple[List[float], str]:
        """
        The 12 cusps and the house system actually used.

        Quadrant systems have no solution near the poles; there the cusps
        are computed with Porphyry instead.
        """
        if house_system not in HOUSE_SYSTEMS:
            raise InvalidInputError(f"Unknown house system: {house_system}")
        jd = self.julian_day(timestamp)
        try:
            return self._houses(jd, lat, lon, house_system), house_system
        except swe.Error as e:
            if house_system not in POLAR_FALLBACK_SYSTEMS:
                raise ProviderUnavailableError(f"Swiss Ephemeris house calculation failed: {e}") from e
            log.warning(
                "house_system_fallback",
                requested=house_system,
                fallback=POLAR_FALLBACK,
                latitude=lat,
                error=str(e),
            )
        try:
            return self._houses(jd, lat, lon, POLAR_FALLBACK), POLAR_FALLBACK
        except swe.Error as e:
            raise ProviderUnavailableError(f"Swiss Ephemeris house calculation failed: {e}") from e

    def cusps(self, timestamp: datetime, lat: float, lon: float,
              house_system: str = "Placidus") -> List[float]:
        return self.houses(timestamp, lat, lon, house_system)[0]
