"""Pydantic models for Birth Chart API request/response validation."""

from enum import Enum
from typing import Any, Optional

import pytz
from pydantic import BaseModel, Field, field_validator
from pydantic import ConfigDict

from ephemeris import HOUSE_SYSTEMS


# Enums
# Available house systems, one member per entry of ephemeris.HOUSE_SYSTEMS
HouseSystemEnum = Enum(
    "HouseSystemEnum",
    [(name.upper().replace(" ", "_"), name) for name in HOUSE_SYSTEMS],
    type=str,
)


# Request Models
class ChartRequest(BaseModel):
    """Birth form data for a chart calculation."""

    name: Optional[str] = Field(None, max_length=200, description="Name of the person")
    birth_date: str = Field(
        ...,
        description="Birth date as YYYY-MM-DD",
        examples=["1990-06-15"]
    )
    birth_time: str = Field(
        ...,
        description="Local birth time as HH:MM or HH:MM:SS",
        examples=["14:30"]
    )
    birth_place: Optional[str] = Field(None, max_length=200, description="Free-text birth place")
    latitude: float = Field(
        ...,
        ge=-90,
        le=90,
        description="Latitude in decimal degrees (-90 to 90)"
    )
    longitude: float = Field(
        ...,
        ge=-180,
        le=180,
        description="Longitude in decimal degrees (-180 to 180)"
    )
    timezone: Optional[str] = Field(
        None,
        description="IANA timezone name (e.g., 'America/New_York'). If not provided, assumes UTC."
    )
    house_system: Optional[HouseSystemEnum] = Field(
        None,
        description="House system; defaults to the server's configured system (Placidus)"
    )

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        """Validate timezone string."""
        if v is None:
            return v
        try:
            pytz.timezone(v)
            return v
        except pytz.exceptions.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {v}")

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{
                "name": "Ada",
                "birth_date": "1990-06-15",
                "birth_time": "14:30",
                "birth_place": "New York, USA",
                "latitude": 40.7128,
                "longitude": -74.0060,
                "timezone": "America/New_York",
                "house_system": "Placidus"
            }]
        }
    )


class CompareChartsRequest(BaseModel):
    """Two stored charts to compare."""
    chart_id_a: str = Field(..., description="Id of the first stored chart")
    chart_id_b: str = Field(..., description="Id of the second stored chart")


# Response Models
class BirthDataResponse(BaseModel):
    """Birth moment and place the chart was cast for."""
    name: Optional[str] = None
    place: Optional[str] = None
    birth_date_local: str
    birth_date_utc: str
    timezone: str
    utc_offset: float
    latitude: float
    longitude: float


class PlanetPositionResponse(BaseModel):
    """Planet position data."""
    planet: str
    longitude: float
    sign: str
    degree: float
    formatted: str
    element: str
    house: int
    speed: float = Field(..., description="Degrees per day; negative while retrograde")
    retrograde: bool


class HouseCuspResponse(BaseModel):
    """Information about a house cusp."""
    house: int
    longitude: float
    sign: str
    degree: float
    formatted: str


class AspectResponse(BaseModel):
    """Aspect between two planets."""
    planet1: str
    planet2: str
    aspect: str
    symbol: str
    angle: float
    separation: float
    orb: float


class ChartResponse(BaseModel):
    """Complete birth chart."""
    id: Optional[str] = None
    birth: BirthDataResponse
    house_system: str
    source: str = Field(..., description="'swiss' for file-based ephemeris, 'moshier' for the reduced-accuracy fallback")
    ascendant: float
    planets: list[PlanetPositionResponse]
    houses: list[HouseCuspResponse]
    aspects: list[AspectResponse]
    element_balance: dict[str, int]


class TransitAspectResponse(BaseModel):
    """Aspect from a transiting planet to a natal planet."""
    transit_planet: str
    natal_planet: str
    aspect: str
    symbol: str
    angle: float
    separation: float
    orb: float
    applying: bool


class TransitResponse(BaseModel):
    """Planets at a given moment against a stored natal chart."""
    chart_id: str
    when: str
    source: str
    planets: list[PlanetPositionResponse] = Field(..., description="Transiting planets placed in the natal houses")
    aspects: list[TransitAspectResponse]


class SynastryResponse(BaseModel):
    """Cross-chart aspects and compatibility score."""
    chart_id_a: str
    chart_id_b: str
    aspects: list[AspectResponse]
    compatibility: int = Field(..., ge=0, le=100)


class DeleteChartResponse(BaseModel):
    message: str
    id: str


class ErrorResponse(BaseModel):
    """Error payload returned by every exception handler."""
    error: str
    message: str
    detail: Optional[Any] = None


class AspectDefinitionResponse(BaseModel):
    """Aspect definition."""
    name: str
    symbol: str
    angle: float
    orb: float


class ConfigAspectsResponse(BaseModel):
    """Response for aspect configuration."""
    aspects: list[AspectDefinitionResponse]


class ConfigHouseSystemsResponse(BaseModel):
    """Response for house systems configuration."""
    house_systems: list[str]
    default: str


class SignInfoResponse(BaseModel):
    name: str
    start_degree: float
    element: str
    modality: str
    color: str


class ConfigSignsResponse(BaseModel):
    signs: list[SignInfoResponse]
