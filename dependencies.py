"""Wiring of the ephemeris provider and chart store for the API routes."""

from functools import lru_cache

import structlog

from download_ephemeris import ensure_ephemeris_files
from ephemeris import SwissEphemeris
from settings import Settings, get_settings
from storage import build_chart_repo

log = structlog.get_logger(__name__)


class Container:
    """Builds the long-lived collaborators once per process."""

    def __init__(self, settings: Settings):
        self.settings = settings
        if settings.EPHE_AUTO_DOWNLOAD and settings.EPHE_PATH:
            ensure_ephemeris_files(settings.EPHE_PATH, settings.EPHE_MIRRORS)
        self.ephemeris = SwissEphemeris(settings.EPHE_PATH)
        self.chart_repo = build_chart_repo(settings)
        log.info(
            "container_ready",
            ephemeris=self.ephemeris.source,
            storage=self.chart_repo.backend,
        )


@lru_cache
def get_container() -> Container:
    return Container(get_settings())


def get_ephemeris():
    return get_container().ephemeris


def get_chart_repo():
    return get_container().chart_repo
