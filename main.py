from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from dependencies import get_chart_repo, get_ephemeris
from exceptions import BirthChartAPIException, ProviderUnavailableError
from logconfig import setup_logging
from routers import router
from settings import get_settings

settings = get_settings()
setup_logging(settings.LOG_LEVEL, json=settings.LOG_JSON)
log = structlog.get_logger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Birth chart calculation API using Swiss Ephemeris",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception Handlers
@app.exception_handler(ProviderUnavailableError)
async def provider_unavailable_handler(request: Request, exc: ProviderUnavailableError):
    """Ephemeris failures are temporary; tell the client to retry."""
    log.warning("provider_unavailable", path=request.url.path, message=str(exc))
    return JSONResponse(
        status_code=exc.status_code,
        headers={"Retry-After": "5"},
        content={
            "error": "ProviderUnavailableError",
            "message": str(exc),
            "detail": {"retryable": True}
        }
    )


@app.exception_handler(BirthChartAPIException)
async def api_exception_handler(request: Request, exc: BirthChartAPIException):
    """Handle invalid input, missing charts and calculation errors."""
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, error=type(exc).__name__, message=str(exc))
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            "message": str(exc),
            "detail": None
        }
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_errors(exc)
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other unexpected exceptions."""
    log.error("unhandled_exception", path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
            "detail": None
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold the raw ValueError, which is not JSON serializable
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(err)
    return errors


# Include API router
app.include_router(router, prefix="/api/v1", tags=["API"])


# Root endpoints
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": settings.APP_NAME,
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
async def health(provider=Depends(get_ephemeris), repo=Depends(get_chart_repo)):
    """Health check endpoint."""
    return {
        "status": "ok",
        "ephemeris": getattr(provider, "source", "unknown"),
        "storage": getattr(repo, "backend", "unknown"),
    }
