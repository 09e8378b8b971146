"""API routers for the Birth Chart API."""

import asyncio
from datetime import datetime
from typing import Optional

import pytz
import structlog
from fastapi import APIRouter, Depends, Query

from dependencies import get_chart_repo, get_ephemeris
from ephemeris import HOUSE_SYSTEMS
from exceptions import (
    BirthChartAPIException,
    ChartCalculationError,
    ChartNotFoundError,
    ProviderUnavailableError,
)
from models import (
    AspectDefinitionResponse,
    AspectResponse,
    BirthDataResponse,
    ChartRequest,
    ChartResponse,
    CompareChartsRequest,
    ConfigAspectsResponse,
    ConfigHouseSystemsResponse,
    ConfigSignsResponse,
    DeleteChartResponse,
    ErrorResponse,
    HouseCuspResponse,
    PlanetPositionResponse,
    SignInfoResponse,
    SynastryResponse,
    TransitAspectResponse,
    TransitResponse,
)
from natal import (
    ASPECT_TYPES,
    SIGN_COLORS,
    SIGN_ELEMENTS,
    SIGN_MODALITIES,
    ZODIAC_SIGNS,
    BirthInput,
    ChartDerivation,
    ChartResult,
    calculate_synastry,
    calculate_transits,
)
from settings import Settings, get_settings

log = structlog.get_logger(__name__)

router = APIRouter()

ASPECT_SYMBOLS = {a.name: a.symbol for a in ASPECT_TYPES}

ERROR_RESPONSES = {
    422: {"model": ErrorResponse, "description": "Validation error - invalid birth data"},
    503: {"model": ErrorResponse, "description": "Ephemeris unavailable - retry later"},
}


# Helper Functions
def _build_birth_input(request: ChartRequest) -> BirthInput:
    """Convert request model to a validated BirthInput."""
    return BirthInput.from_form(
        birth_date=request.birth_date,
        birth_time=request.birth_time,
        latitude=request.latitude,
        longitude=request.longitude,
        timezone=request.timezone,
        name=request.name,
        place=request.birth_place,
    )


def _format_position(degree: float, sign: str) -> str:
    deg_int = int(degree)
    minutes = int((degree - deg_int) * 60)
    return f"{deg_int}°{minutes:02d}' {sign}"


def _convert_aspects(aspects) -> list[AspectResponse]:
    return [
        AspectResponse(
            planet1=a.planet1,
            planet2=a.planet2,
            aspect=a.aspect,
            symbol=ASPECT_SYMBOLS.get(a.aspect, ""),
            angle=a.angle,
            separation=round(a.separation, 4),
            orb=round(a.orb, 4),
        )
        for a in aspects
    ]


def _planet_response(p) -> PlanetPositionResponse:
    return PlanetPositionResponse(
        planet=p.planet,
        longitude=p.longitude,
        sign=p.sign,
        degree=p.degree,
        formatted=_format_position(p.degree, p.sign),
        element=p.element,
        house=p.house,
        speed=round(p.speed, 6),
        retrograde=p.retrograde,
    )


def _chart_response(chart: ChartResult, chart_id: str = None) -> ChartResponse:
    birth = chart.birth
    return ChartResponse(
        id=chart_id,
        birth=BirthDataResponse(
            name=birth.name,
            place=birth.place,
            birth_date_local=birth.birth_date_local.isoformat(),
            birth_date_utc=birth.birth_date_utc.isoformat(),
            timezone=birth.timezone,
            utc_offset=birth.utc_offset_hours,
            latitude=birth.latitude,
            longitude=birth.longitude,
        ),
        house_system=chart.house_system,
        source=chart.source,
        ascendant=chart.ascendant,
        planets=[_planet_response(p) for p in chart.planets],
        houses=[
            HouseCuspResponse(
                house=h.house,
                longitude=h.longitude,
                sign=h.sign,
                degree=h.degree,
                formatted=_format_position(h.degree, h.sign),
            )
            for h in chart.houses
        ],
        aspects=_convert_aspects(chart.aspects),
        element_balance=chart.element_balance(),
    )


async def _run_blocking(settings: Settings, func, *args):
    """Run a blocking ephemeris computation in the executor under the provider timeout."""
    try:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, func, *args),
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        log.warning("provider_timeout", timeout=settings.PROVIDER_TIMEOUT_SECONDS)
        raise ProviderUnavailableError(
            f"Ephemeris did not answer within {settings.PROVIDER_TIMEOUT_SECONDS} seconds"
        )
    except BirthChartAPIException:
        raise
    except Exception as e:
        log.exception("chart_calculation_failed")
        raise ChartCalculationError(f"Chart calculation failed: {str(e)}")


async def _derive(request: ChartRequest, provider, settings: Settings) -> ChartResult:
    """Validate input, then run the blocking derivation under a timeout."""
    birth = _build_birth_input(request)
    house_system = request.house_system.value if request.house_system else settings.DEFAULT_HOUSE_SYSTEM
    derivation = ChartDerivation(provider)
    return await _run_blocking(settings, derivation.derive, birth, house_system)


def _load_chart(repo, chart_id: str) -> ChartResult:
    chart = repo.get(chart_id)
    if chart is None:
        raise ChartNotFoundError(f"Chart not found: {chart_id}")
    return chart


# Configuration Endpoints
@router.get(
    "/config/house-systems",
    response_model=ConfigHouseSystemsResponse,
    summary="List Available House Systems",
)
async def get_house_systems(settings: Settings = Depends(get_settings)):
    """List all available house systems."""
    return ConfigHouseSystemsResponse(
        house_systems=list(HOUSE_SYSTEMS.keys()),
        default=settings.DEFAULT_HOUSE_SYSTEM,
    )


@router.get(
    "/config/aspects",
    response_model=ConfigAspectsResponse,
    summary="List Aspect Definitions",
    description="Major aspects with their exact angle and the orb allowed around it.",
)
async def get_aspects():
    return ConfigAspectsResponse(
        aspects=[
            AspectDefinitionResponse(name=a.name, symbol=a.symbol, angle=a.angle, orb=a.orb)
            for a in ASPECT_TYPES
        ]
    )


@router.get(
    "/config/signs",
    response_model=ConfigSignsResponse,
    summary="List Zodiac Signs",
    description="Zodiac signs with their element, modality and display color.",
)
async def get_signs():
    return ConfigSignsResponse(
        signs=[
            SignInfoResponse(
                name=name,
                start_degree=i * 30,
                element=SIGN_ELEMENTS[name],
                modality=SIGN_MODALITIES[name],
                color=SIGN_COLORS[name],
            )
            for i, name in enumerate(ZODIAC_SIGNS)
        ]
    )


# Chart Endpoints
@router.post(
    "/charts/calculate",
    response_model=ChartResponse,
    summary="Calculate Birth Chart",
    description="""
    Calculate a birth chart without storing it:
    - Planet positions in signs and houses
    - The twelve house cusps
    - Major aspects between planets
    """,
    responses=ERROR_RESPONSES,
)
async def calculate_chart(
    request: ChartRequest,
    provider=Depends(get_ephemeris),
    settings: Settings = Depends(get_settings),
):
    chart = await _derive(request, provider, settings)
    return _chart_response(chart)


@router.post(
    "/charts",
    response_model=ChartResponse,
    status_code=201,
    summary="Create Birth Chart",
    description="Calculate a birth chart and store it. The response carries the generated id.",
    responses=ERROR_RESPONSES,
)
async def create_chart(
    request: ChartRequest,
    provider=Depends(get_ephemeris),
    repo=Depends(get_chart_repo),
    settings: Settings = Depends(get_settings),
):
    chart = await _derive(request, provider, settings)
    chart_id = repo.save(chart)
    log.info("chart_stored", chart_id=chart_id, storage=repo.backend)
    return _chart_response(chart, chart_id)


@router.post(
    "/charts/compare",
    response_model=SynastryResponse,
    summary="Compare Two Charts",
    description="""
    Synastry between two stored charts: aspects from every planet of the
    first chart to every planet of the second, and a 0-100 compatibility
    score where 50 is neutral.
    """,
    responses={404: {"model": ErrorResponse, "description": "Chart not found"}},
)
async def compare_charts(request: CompareChartsRequest, repo=Depends(get_chart_repo)):
    chart_a = _load_chart(repo, request.chart_id_a)
    chart_b = _load_chart(repo, request.chart_id_b)
    result = calculate_synastry(chart_a, chart_b)
    return SynastryResponse(
        chart_id_a=request.chart_id_a,
        chart_id_b=request.chart_id_b,
        aspects=_convert_aspects(result.aspects),
        compatibility=result.compatibility,
    )


@router.get(
    "/charts/{chart_id}/transits",
    response_model=TransitResponse,
    summary="Transits to a Stored Chart",
    description="""
    Planet positions at ``when`` (ISO 8601, default now; naive values are UTC)
    placed in the houses of a stored natal chart, with their aspects to the
    natal planets. Transit orbs are tighter than natal ones.
    """,
    responses={
        404: {"model": ErrorResponse, "description": "Chart not found"},
        503: ERROR_RESPONSES[503],
    },
)
async def get_transits(
    chart_id: str,
    when: Optional[datetime] = Query(None, description="Moment to calculate transits for"),
    provider=Depends(get_ephemeris),
    repo=Depends(get_chart_repo),
    settings: Settings = Depends(get_settings),
):
    natal = _load_chart(repo, chart_id)
    result = await _run_blocking(settings, calculate_transits, natal, when or datetime.now(pytz.UTC), provider)
    return TransitResponse(
        chart_id=chart_id,
        when=result.when.isoformat(),
        source=result.source,
        planets=[_planet_response(p) for p in result.planets],
        aspects=[
            TransitAspectResponse(
                transit_planet=a.transit_planet,
                natal_planet=a.natal_planet,
                aspect=a.aspect,
                symbol=ASPECT_SYMBOLS.get(a.aspect, ""),
                angle=a.angle,
                separation=round(a.separation, 4),
                orb=round(a.orb, 4),
                applying=a.applying,
            )
            for a in result.aspects
        ],
    )


@router.get(
    "/charts/{chart_id}",
    response_model=ChartResponse,
    summary="Get Stored Chart",
    responses={404: {"model": ErrorResponse, "description": "Chart not found"}},
)
async def get_chart(chart_id: str, repo=Depends(get_chart_repo)):
    return _chart_response(_load_chart(repo, chart_id), chart_id)


@router.delete(
    "/charts/{chart_id}",
    response_model=DeleteChartResponse,
    summary="Delete Stored Chart",
    responses={404: {"model": ErrorResponse, "description": "Chart not found"}},
)
async def delete_chart(chart_id: str, repo=Depends(get_chart_repo)):
    if not repo.delete(chart_id):
        raise ChartNotFoundError(f"Chart not found: {chart_id}")
    log.info("chart_deleted", chart_id=chart_id)
    return DeleteChartResponse(message="Chart deleted successfully", id=chart_id)
