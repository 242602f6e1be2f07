"""FastAPI application entry point for the Conduit service.

Define the FastAPI application, register middleware, routers and exception
handlers, and build the provider registry and token system inside the
lifespan so every side effect happens in a predictable order.
"""

import logging.config
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api import providers, tokens
from app.api.dependencies import ProviderSubsystemUnavailable
from app.api.middleware import REQUEST_ID_HEADER, RequestCorrelationMiddleware
from app.config import get_settings
from app.conduit.core.logging_config import (
    configure_structlog_wrapper,
    get_logger,
    get_logging_config,
)
from app.conduit.loader import ResourceLoader, create_registry
from app.conduit.tokens import TokenSubsystemUnavailable, create_token_system


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown.

    A token system that cannot be built leaves ``app.state.token_system``
    unset, so token routes answer 503 while the rest of the service runs.
    Providers that fail to initialize are skipped by the registry.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control returns to the application after startup completes.
    """
    # === STARTUP SEQUENCE ===

    settings = get_settings()

    logging.config.dictConfig(get_logging_config(settings))
    configure_structlog_wrapper(settings)

    logger = get_logger("lifespan")
    logger.info("Conduit startup initiated", env=settings.ENVIRONMENT)

    app.state.token_system = None
    try:
        token_system = create_token_system(settings.TOKEN_TRACKING)
        token_system.start_cleanup()
        app.state.token_system = token_system
    except Exception:
        logger.critical("Token system failed to initialize", exc_info=True)

    registry = await create_registry(settings)
    loader = ResourceLoader(registry, app.state.token_system)
    app.state.loader = loader
    if settings.REGISTRY.enable_health_checks:
        registry.start_health_checks()
    await loader.refresh_catalog()

    app.state.is_ready = True
    logger.info(
        "Resources initialized",
        providers=[p.name for p in registry.get_providers()],
        token_tracking=app.state.token_system is not None,
    )

    yield

    # === SHUTDOWN SEQUENCE ===

    logger.info("Conduit shutdown initiated")
    app.state.is_ready = False
    await loader.shutdown()
    if app.state.token_system is not None:
        await app.state.token_system.shutdown()
    logger.info("Resources released")


_settings = get_settings()

app = FastAPI(
    title=_settings.PROJECT_NAME,
    version=_settings.VERSION,
    description="Resource federation and token efficiency accounting for agent plugins",
    lifespan=lifespan,
)

app.add_middleware(RequestCorrelationMiddleware)


def mount_routers(application: FastAPI, prefix: str) -> None:
    """Mount the read API under an already normalized prefix."""
    application.include_router(tokens.router, prefix=prefix)
    application.include_router(providers.router, prefix=prefix)


mount_routers(app, _settings.API_PREFIX)


# ==============================================================================
# EXCEPTION HANDLERS
# ==============================================================================
# Every failure body has the shape {"error": "<message>"}.


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    return _error(status.HTTP_400_BAD_REQUEST, f"Invalid request: {location} {first.get('msg', '')}".strip())


@app.exception_handler(TokenSubsystemUnavailable)
@app.exception_handler(ProviderSubsystemUnavailable)
async def subsystem_unavailable_handler(request: Request, exc: Exception):
    get_logger("exception_handler").warning("Subsystem unavailable", error=str(exc))
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions with request context and return a generic 500."""
    get_logger("exception_handler").error(
        "Unhandled exception occurred",
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    response = _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")
    request_id = request.headers.get(REQUEST_ID_HEADER)
    if request_id:
        response.headers[REQUEST_ID_HEADER] = request_id
    return response


# ==============================================================================
# PROBES
# ==============================================================================


@app.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_probe() -> dict[str, str]:
    """Return liveness status; does not check providers or token tracking."""
    return {"status": "alive"}


@app.get("/health/ready", status_code=status.HTTP_200_OK)
async def readiness_probe(request: Request) -> dict[str, str]:
    """Return readiness status for traffic routing decisions.

    Raises:
        HTTPException: 503 Service Unavailable until startup completes.
    """
    if not getattr(request.app.state, "is_ready", False):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="System is starting up or dependencies are unavailable",
        )
    return {"status": "ready"}


@app.get("/health", include_in_schema=False)
async def legacy_health() -> dict[str, str]:
    """Return health status for backward compatibility.

    .. deprecated::
        Use ``/health/live`` or ``/health/ready`` instead.
    """
    return {"status": "ok", "note": "deprecated: use /health/live or /health/ready"}
