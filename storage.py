"""
Chart persistence.

Charts are stored as JSON-safe records under a generated id, either in a
process-local dict (dev/tests) or in Redis under ``chart:{id}``.
"""

import json
import uuid
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional

import redis
import structlog

from natal import Aspect, BirthInput, ChartResult, HouseCusp, PlanetPosition

log = structlog.get_logger(__name__)


def chart_to_record(chart: ChartResult) -> Dict[str, Any]:
    birth = chart.birth
    return {
        "birth": {
            "birth_date_local": birth.birth_date_local.isoformat(),
            "timezone": birth.timezone,
            "birth_date_utc": birth.birth_date_utc.isoformat(),
            "latitude": birth.latitude,
            "longitude": birth.longitude,
            "name": birth.name,
            "place": birth.place,
        },
        "planets": [asdict(p) for p in chart.planets],
        "houses": [asdict(h) for h in chart.houses],
        "aspects": [asdict(a) for a in chart.aspects],
        "house_system": chart.house_system,
        "source": chart.source,
    }


def chart_from_record(record: Dict[str, Any]) -> ChartResult:
    birth = dict(record["birth"])
    birth["birth_date_local"] = datetime.fromisoformat(birth["birth_date_local"])
    birth["birth_date_utc"] = datetime.fromisoformat(birth["birth_date_utc"])
    return ChartResult(
        birth=BirthInput(**birth),
        planets=tuple(PlanetPosition(**p) for p in record["planets"]),
        houses=tuple(HouseCusp(**h) for h in record["houses"]),
        aspects=tuple(Aspect(**a) for a in record["aspects"]),
        house_system=record["house_system"],
        source=record["source"],
    )


def new_chart_id() -> str:
    return uuid.uuid4().hex


class InMemoryChartRepo:
    """Chart store kept in a local dict. Not persistent."""

    backend = "memory"

    def __init__(self):
        self._db: Dict[str, Dict[str, Any]] = {}

    def save(self, chart: ChartResult) -> str:
        chart_id = new_chart_id()
        self._db[chart_id] = chart_to_record(chart)
        return chart_id

    def get(self, chart_id: str) -> Optional[ChartResult]:
        record = self._db.get(chart_id)
        return chart_from_record(record) if record else None

    def delete(self, chart_id: str) -> bool:
        return self._db.pop(chart_id, None) is not None


class RedisChartRepo:
    """Chart store backed by Redis (key: ``chart:{id}``)."""

    backend = "redis"

    def __init__(self, url: Optional[str] = None, client: Optional[redis.Redis] = None):
        self.client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)

    @staticmethod
    def key(chart_id: str) -> str:
        return f"chart:{chart_id}"

    def ping(self) -> bool:
        return bool(self.client.ping())

    def save(self, chart: ChartResult) -> str:
        chart_id = new_chart_id()
        self.client.set(self.key(chart_id), json.dumps(chart_to_record(chart)))
        return chart_id

    def get(self, chart_id: str) -> Optional[ChartResult]:
        raw = self.client.get(self.key(chart_id))
        return chart_from_record(json.loads(raw)) if raw else None

    def delete(self, chart_id: str) -> bool:
        return bool(self.client.delete(self.key(chart_id)))


def build_chart_repo(settings):
    """Redis when configured and reachable, in-memory otherwise."""
    if not settings.REDIS_URL:
        if settings.REQUIRE_REDIS:
            raise RuntimeError("Redis required but REDIS_URL not set")
        return InMemoryChartRepo()

    try:
        repo = RedisChartRepo(settings.REDIS_URL)
        repo.ping()
        return repo
    except redis.RedisError as err:
        if settings.REQUIRE_REDIS:
            raise RuntimeError("Redis required but unavailable") from err
        log.warning("redis_unavailable", error=str(err), fallback="memory")
        return InMemoryChartRepo()
