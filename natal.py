"""
Natal Chart Derivation

Turns raw ephemeris output (planetary longitudes and house cusps) into a
birth chart: zodiac signs, house placements and major aspects. Also compares
two charts (synastry), scores their compatibility, and places the planets of
any moment against a natal chart (transits).

The ephemeris itself is injected: anything with ``longitudes`` and ``cusps``
methods works, see ``ephemeris.SwissEphemeris``.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import pytz
import structlog

from exceptions import (
    InvalidCoordinatesError,
    InvalidDateTimeError,
    InvalidInputError,
    InvalidTimezoneError,
    ProviderUnavailableError,
)

log = structlog.get_logger(__name__)


class Planet(Enum):
    SUN = "Sun"
    MOON = "Moon"
    MERCURY = "Mercury"
    VENUS = "Venus"
    MARS = "Mars"
    JUPITER = "Jupiter"
    SATURN = "Saturn"
    URANUS = "Uranus"
    NEPTUNE = "Neptune"
    PLUTO = "Pluto"


PLANET_NAMES: Tuple[str, ...] = tuple(p.value for p in Planet)


@dataclass(frozen=True)
class AspectType:
    """Definition of a major aspect with a fixed orb."""
    name: str
    angle: float
    orb: float
    symbol: str


ZODIAC_SIGNS: Tuple[str, ...] = (
    "Aries", "Taurus", "Gemini", "Cancer",
    "Leo", "Virgo", "Libra", "Scorpio",
    "Sagittarius", "Capricorn", "Aquarius", "Pisces",
)

SIGN_ELEMENTS: Mapping[str, str] = MappingProxyType({
    "Aries": "Fire", "Taurus": "Earth", "Gemini": "Air", "Cancer": "Water",
    "Leo": "Fire", "Virgo": "Earth", "Libra": "Air", "Scorpio": "Water",
    "Sagittarius": "Fire", "Capricorn": "Earth", "Aquarius": "Air", "Pisces": "Water",
})

SIGN_MODALITIES: Mapping[str, str] = MappingProxyType({
    "Aries": "Cardinal", "Taurus": "Fixed", "Gemini": "Mutable",
    "Cancer": "Cardinal", "Leo": "Fixed", "Virgo": "Mutable",
    "Libra": "Cardinal", "Scorpio": "Fixed", "Sagittarius": "Mutable",
    "Capricorn": "Cardinal", "Aquarius": "Fixed", "Pisces": "Mutable",
})

SIGN_COLORS: Mapping[str, str] = MappingProxyType({
    "Aries": "#FF4136",
    "Taurus": "#2ECC40",
    "Gemini": "#FFDC00",
    "Cancer": "#B10DC9",
    "Leo": "#FF851B",
    "Virgo": "#7FDBFF",
    "Libra": "#F012BE",
    "Scorpio": "#111111",
    "Sagittarius": "#01FF70",
    "Capricorn": "#0074D9",
    "Aquarius": "#85144b",
    "Pisces": "#39CCCC",
})

# Ordered by defining angle; the order decides ties in find_aspect.
ASPECT_TYPES: Tuple[AspectType, ...] = (
    AspectType("Conjunction", 0, 8, "☌"),
    AspectType("Sextile", 60, 4, "⚹"),
    AspectType("Square", 90, 5, "□"),
    AspectType("Trine", 120, 5, "△"),
    AspectType("Opposition", 180, 8, "☍"),
)

SYNASTRY_POINTS: Mapping[str, int] = MappingProxyType({
    "Conjunction": 5,
    "Trine": 4,
    "Sextile": 3,
    "Square": -2,
    "Opposition": -1,
})

SIGNIFICANT_PAIRS = frozenset({
    frozenset({"Sun", "Moon"}),
    frozenset({"Venus", "Mars"}),
    frozenset({"Sun", "Venus"}),
    frozenset({"Moon", "Venus"}),
})


def normalize_degrees(deg: float) -> float:
    """Normalize degrees to 0-360 range."""
    deg = deg % 360
    # -1e-20 % 360 gives 360.0 in floating point
    return 0.0 if deg >= 360 else deg


def angular_distance(pos1: float, pos2: float) -> float:
    """
    Calculate the shortest angular distance between two positions.
    Always returns a positive value 0-180.
    """
    diff = abs(normalize_degrees(pos1) - normalize_degrees(pos2))
    return min(diff, 360 - diff)


def sign(longitude: float) -> str:
    """Zodiac sign of an ecliptic longitude. 30.0 is already Taurus."""
    return ZODIAC_SIGNS[int(normalize_degrees(longitude) // 30)]


def degree_in_sign(longitude: float) -> float:
    return normalize_degrees(longitude) % 30


def house_of(longitude: float, cusps: Sequence[float]) -> int:
    """
    House number (1-12) containing ``longitude``.

    House i spans [cusps[i], cusps[i+1]) walking forward around the circle,
    so a planet sitting exactly on a cusp belongs to the house that starts
    there. The span is measured as a forward arc from the cusp, which keeps
    houses that straddle 0° Aries correct.
    """
    if len(cusps) != 12:
        raise ValueError(f"Expected 12 house cusps, got {len(cusps)}")

    planet_long = normalize_degrees(longitude)
    for i in range(12):
        cusp_start = normalize_degrees(cusps[i])
        cusp_end = normalize_degrees(cusps[(i + 1) % 12])
        span = (cusp_end - cusp_start) % 360
        offset = (planet_long - cusp_start) % 360
        if offset < span:
            return i + 1
    # Only reachable when every cusp coincides
    return 1


def find_aspect(pos1: float, pos2: float,
                aspect_types: Sequence[AspectType] = ASPECT_TYPES) -> Optional[Tuple[AspectType, float, float]]:
    """
    Closest aspect formed by two longitudes.

    Returns ``(aspect_type, separation, orb)`` or None. When several types are
    in orb the smallest deviation wins; on an exact tie the type listed first
    (lower angle) is kept.
    """
    separation = angular_distance(pos1, pos2)
    best = None
    for aspect_type in aspect_types:
        orb = abs(separation - aspect_type.angle)
        if orb > aspect_type.orb:
            continue
        if best is None or orb < best[2]:
            best = (aspect_type, separation, orb)
    return best


@dataclass(frozen=True)
class BirthInput:
    """Validated birth moment and place."""
    birth_date_local: datetime
    timezone: str
    birth_date_utc: datetime
    latitude: float
    longitude: float
    name: Optional[str] = None
    place: Optional[str] = None

    def __post_init__(self):
        if not -90 <= self.latitude <= 90:
            raise InvalidCoordinatesError("Latitude must be between -90 and 90")
        if not -180 <= self.longitude <= 180:
            raise InvalidCoordinatesError("Longitude must be between -180 and 180")

    @property
    def utc_offset_hours(self) -> float:
        local = self.birth_date_utc.astimezone(_parse_timezone(self.timezone))
        return local.utcoffset().total_seconds() / 3600

    @classmethod
    def from_datetime(cls,
                      birth_date: datetime,
                      latitude: float,
                      longitude: float,
                      timezone: Optional[str] = None,
                      name: Optional[str] = None,
                      place: Optional[str] = None) -> "BirthInput":
        tz = _parse_timezone(timezone or "UTC")
        try:
            if birth_date.tzinfo is not None:
                utc = birth_date.astimezone(pytz.UTC)
                local = utc.astimezone(tz).replace(tzinfo=None)
            else:
                local = birth_date
                utc = _convert_to_utc(birth_date, tz)
        except OverflowError:
            raise InvalidDateTimeError(
                f"Birth date {birth_date.isoformat()} in {tz.zone} falls outside the supported date range"
            )
        return cls(
            birth_date_local=local,
            timezone=tz.zone,
            birth_date_utc=utc,
            latitude=latitude,
            longitude=longitude,
            name=name,
            place=place,
        )

    @classmethod
    def from_form(cls,
                  birth_date: str,
                  birth_time: str,
                  latitude: float,
                  longitude: float,
                  timezone: Optional[str] = None,
                  name: Optional[str] = None,
                  place: Optional[str] = None) -> "BirthInput":
        """Build from the raw strings of the birth form (YYYY-MM-DD, HH:MM[:SS])."""
        text = f"{(birth_date or '').strip()} {(birth_time or '').strip()}"
        for fmt in ("%Y-%m-%d %H:%M", "%Y-%m-%d %H:%M:%S"):
            try:
                local = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        else:
            raise InvalidDateTimeError(
                f"Invalid birth date/time {text.strip()!r}; expected YYYY-MM-DD and HH:MM"
            )
        return cls.from_datetime(local, latitude, longitude, timezone, name, place)


def _parse_timezone(timezone: str):
    try:
        return pytz.timezone(timezone)
    except pytz.exceptions.UnknownTimeZoneError:
        raise InvalidTimezoneError(f"Unknown timezone: {timezone}")


def _convert_to_utc(dt: datetime, tz) -> datetime:
    try:
        local_dt = tz.localize(dt, is_dst=None)
    except pytz.exceptions.AmbiguousTimeError:
        local_dt = tz.localize(dt, is_dst=False)
    except pytz.exceptions.NonExistentTimeError:
        local_dt = tz.localize(dt, is_dst=True)
    return local_dt.astimezone(pytz.UTC)


@dataclass(frozen=True)
class PlanetPosition:
    planet: str
    longitude: float
    sign: str
    degree: float
    house: int
    # Degrees per day along the ecliptic; 0.0 when the provider reports no motion
    speed: float = 0.0

    @property
    def element(self) -> str:
        return SIGN_ELEMENTS[self.sign]

    @property
    def retrograde(self) -> bool:
        return self.speed < 0


@dataclass(frozen=True)
class HouseCusp:
    house: int
    longitude: float
    sign: str
    degree: float


@dataclass(frozen=True)
class Aspect:
    planet1: str
    planet2: str
    aspect: str
    angle: float
    separation: float
    orb: float


@dataclass(frozen=True)
class ChartResult:
    birth: BirthInput
    planets: Tuple[PlanetPosition, ...]
    houses: Tuple[HouseCusp, ...]
    aspects: Tuple[Aspect, ...]
    house_system: str = "Placidus"
    source: str = "swiss"

    @property
    def ascendant(self) -> float:
        return self.houses[0].longitude

    def planet(self, name: str) -> PlanetPosition:
        for position in self.planets:
            if position.planet == name:
                return position
        raise KeyError(name)

    def element_balance(self) -> Dict[str, int]:
        """Count of planets per element."""
        balance = {"Fire": 0, "Earth": 0, "Air": 0, "Water": 0}
        for position in self.planets:
            balance[position.element] += 1
        return balance


class EphemerisProvider(Protocol):
    """
    What ``ChartDerivation`` needs from an ephemeris.

    Providers may also offer ``positions(timestamp, lat, lon)`` returning
    ``{planet: (longitude, speed)}`` and ``houses(timestamp, lat, lon,
    house_system)`` returning ``(cusps, house_system_used)``. When present
    they are preferred, so planet speeds and house system fallbacks reach
    the chart.
    """

    source: str

    def longitudes(self, timestamp: datetime, lat: float, lon: float) -> Mapping[str, float]:
        ...

    def cusps(self, timestamp: datetime, lat: float, lon: float,
              house_system: str = "Placidus") -> Sequence[float]:
        ...


def calculate_aspects(positions: Mapping[str, float]) -> List[Aspect]:
    """All aspects between pairs of ``positions`` (name -> longitude), in input order."""
    names = list(positions)
    aspects = []
    for i, name1 in enumerate(names):
        for name2 in names[i + 1:]:
            found = find_aspect(positions[name1], positions[name2])
            if found is None:
                continue
            aspect_type, separation, orb = found
            aspects.append(Aspect(
                planet1=name1,
                planet2=name2,
                aspect=aspect_type.name,
                angle=aspect_type.angle,
                separation=separation,
                orb=orb,
            ))
    return aspects


def _checked_degrees(value, what: str) -> float:
    return normalize_degrees(_checked_number(value, what))


def _checked_number(value, what: str) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ProviderUnavailableError(f"Ephemeris returned a non-numeric {what}: {value!r}")
    if not math.isfinite(value):
        raise ProviderUnavailableError(f"Ephemeris returned a non-finite {what}")
    return value


def _provider_call(func, *args):
    try:
        return func(*args)
    except (ProviderUnavailableError, InvalidInputError):
        raise
    except Exception as e:
        raise ProviderUnavailableError(f"Ephemeris provider failed: {e}") from e


def fetch_planets(provider: EphemerisProvider, timestamp: datetime,
                  lat: float, lon: float) -> Tuple[Dict[str, float], Dict[str, float]]:
    """Checked ``(longitudes, speeds)`` for the ten planets from ``provider``."""
    positions = getattr(provider, "positions", None)
    if positions is not None:
        raw = _provider_call(positions, timestamp, lat, lon)
        raw_longitudes = {name: value[0] for name, value in raw.items()}
        raw_speeds = {name: value[1] for name, value in raw.items()}
    else:
        raw_longitudes = _provider_call(provider.longitudes, timestamp, lat, lon)
        raw_speeds = {}

    missing = [name for name in PLANET_NAMES if name not in raw_longitudes]
    if missing:
        raise ProviderUnavailableError(f"Ephemeris returned no longitude for: {', '.join(missing)}")

    longitudes = {name: _checked_degrees(raw_longitudes[name], f"{name} longitude")
                  for name in PLANET_NAMES}
    speeds = {name: _checked_number(raw_speeds.get(name, 0.0), f"{name} speed")
              for name in PLANET_NAMES}
    return longitudes, speeds


class ChartDerivation:
    """Derive birth charts from an injected ephemeris provider."""

    def __init__(self, provider: EphemerisProvider):
        self.provider = provider

    def _fetch_houses(self, birth: BirthInput, house_system: str) -> Tuple[List[float], str]:
        ts, lat, lon = birth.birth_date_utc, birth.latitude, birth.longitude
        houses = getattr(self.provider, "houses", None)
        if houses is not None:
            raw_cusps, used = _provider_call(houses, ts, lat, lon, house_system)
        else:
            raw_cusps, used = _provider_call(self.provider.cusps, ts, lat, lon, house_system), house_system
        raw_cusps = list(raw_cusps)
        if len(raw_cusps) != 12:
            raise ProviderUnavailableError(f"Ephemeris returned {len(raw_cusps)} house cusps, expected 12")
        return [_checked_degrees(c, "house cusp") for c in raw_cusps], used

    def derive(self, birth: BirthInput, house_system: str = "Placidus") -> ChartResult:
        longitudes, speeds = fetch_planets(self.provider, birth.birth_date_utc,
                                           birth.latitude, birth.longitude)
        cusps, house_system = self._fetch_houses(birth, house_system)

        houses = tuple(
            HouseCusp(house=i + 1, longitude=cusp, sign=sign(cusp), degree=degree_in_sign(cusp))
            for i, cusp in enumerate(cusps)
        )
        planets = tuple(
            PlanetPosition(
                planet=name,
                longitude=lon,
                sign=sign(lon),
                degree=degree_in_sign(lon),
                house=house_of(lon, cusps),
                speed=speeds[name],
            )
            for name, lon in longitudes.items()
        )
        aspects = tuple(calculate_aspects(longitudes))

        chart = ChartResult(
            birth=birth,
            planets=planets,
            houses=houses,
            aspects=aspects,
            house_system=house_system,
            source=getattr(self.provider, "source", "unknown"),
        )
        log.info(
            "chart_derived",
            birth_date_utc=birth.birth_date_utc.isoformat(),
            house_system=house_system,
            aspects=len(aspects),
            source=chart.source,
        )
        return chart


def derive_chart(birth: BirthInput, provider: EphemerisProvider,
                 house_system: str = "Placidus") -> ChartResult:
    return ChartDerivation(provider).derive(birth, house_system)


@dataclass(frozen=True)
class SynastryResult:
    aspects: Tuple[Aspect, ...]
    compatibility: int = 50


def calculate_synastry_aspects(chart_a: ChartResult, chart_b: ChartResult) -> List[Aspect]:
    """Aspects from every planet of ``chart_a`` to every planet of ``chart_b``."""
    aspects = []
    for p1 in chart_a.planets:
        for p2 in chart_b.planets:
            found = find_aspect(p1.longitude, p2.longitude)
            if found is None:
                continue
            aspect_type, separation, orb = found
            aspects.append(Aspect(p1.planet, p2.planet, aspect_type.name,
                                  aspect_type.angle, separation, orb))
    return aspects


def compatibility_score(aspects: Sequence[Aspect]) -> int:
    """
    Score 0-100 from synastry aspects; 50 is neutral.

    Harmonious aspects add points, hard ones subtract, and the four classic
    pairs (Sun/Moon, Venus/Mars, Sun/Venus, Moon/Venus) count double.
    """
    total = 0
    max_possible = 0
    for aspect in aspects:
        points = SYNASTRY_POINTS.get(aspect.aspect, 0)
        if frozenset({aspect.planet1, aspect.planet2}) in SIGNIFICANT_PAIRS:
            points *= 2
        total += points
        max_possible += abs(points)

    if not max_possible:
        return 50
    score = 50 + total * 50 / max_possible
    return int(min(100, max(0, round(score))))


def calculate_synastry(chart_a: ChartResult, chart_b: ChartResult) -> SynastryResult:
    aspects = calculate_synastry_aspects(chart_a, chart_b)
    return SynastryResult(aspects=tuple(aspects), compatibility=compatibility_score(aspects))


# Transits use tighter orbs than the natal chart.
TRANSIT_ASPECT_TYPES: Tuple[AspectType, ...] = (
    AspectType("Conjunction", 0, 2, "☌"),
    AspectType("Sextile", 60, 1, "⚹"),
    AspectType("Square", 90, 1.5, "□"),
    AspectType("Trine", 120, 1.5, "△"),
    AspectType("Opposition", 180, 2, "☍"),
)


@dataclass(frozen=True)
class TransitAspect:
    transit_planet: str
    natal_planet: str
    aspect: str
    angle: float
    separation: float
    orb: float
    applying: bool


@dataclass(frozen=True)
class TransitResult:
    natal: ChartResult
    when: datetime
    planets: Tuple[PlanetPosition, ...]
    aspects: Tuple[TransitAspect, ...]
    source: str = "swiss"


def is_applying(transit_long: float, speed: float, natal_long: float, angle: float) -> bool:
    """True when the moving transit planet is closing in on the exact aspect angle."""
    if speed == 0:
        return False
    now = abs(angular_distance(transit_long, natal_long) - angle)
    # Look a short step ahead along the planet's motion
    later = abs(angular_distance(transit_long + speed * 0.01, natal_long) - angle)
    return later < now


def calculate_transits(natal: ChartResult, when: datetime,
                       provider: EphemerisProvider) -> TransitResult:
    """
    Planets at ``when`` placed in the natal houses, with their aspects to
    the natal planets. A naive ``when`` is taken as UTC.
    """
    if when.tzinfo is None:
        when = pytz.UTC.localize(when)
    birth = natal.birth
    longitudes, speeds = fetch_planets(provider, when, birth.latitude, birth.longitude)
    cusps = [h.longitude for h in natal.houses]

    planets = tuple(
        PlanetPosition(
            planet=name,
            longitude=lon,
            sign=sign(lon),
            degree=degree_in_sign(lon),
            house=house_of(lon, cusps),
            speed=speeds[name],
        )
        for name, lon in longitudes.items()
    )

    aspects = []
    for transit in planets:
        for natal_planet in natal.planets:
            found = find_aspect(transit.longitude, natal_planet.longitude, TRANSIT_ASPECT_TYPES)
            if found is None:
                continue
            aspect_type, separation, orb = found
            aspects.append(TransitAspect(
                transit_planet=transit.planet,
                natal_planet=natal_planet.planet,
                aspect=aspect_type.name,
                angle=aspect_type.angle,
                separation=separation,
                orb=orb,
                applying=is_applying(transit.longitude, transit.speed,
                                     natal_planet.longitude, aspect_type.angle),
            ))

    log.info("transits_calculated", when=when.isoformat(), aspects=len(aspects))
    return TransitResult(
        natal=natal,
        when=when,
        planets=planets,
        aspects=tuple(aspects),
        source=getattr(provider, "source", "unknown"),
    )
