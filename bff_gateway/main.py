"""
BFF Gateway Application Factory
===============================

Entry point for the Backend-For-Frontend gateway that sits between the
browser and internal services.

Architecture:
    Browser → Gateway (this service) → Identity Provider / Backend Services

Routers:
    - /login, /callback, /logout, /check-session : PKCE login flow
      (mounted under AUTH_PATH_PREFIX)
    - /health                                    : Health check endpoint
    - /<service-prefix>/...                      : Proxied to configured backends

Environment Variables Required:
    - CLIENT_ID: OAuth client id
    - AUTH_SERVER_BASE_URL: Identity provider base URL
    - SERVICES: JSON object of path prefix -> backend URL
      (e.g., '{"/api": "http://backend:8000"}')
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn bff_gateway.main:create_app --factory --reload --port 8080

    Production:
        uvicorn bff_gateway.main:create_app --factory --host 0.0.0.0 --port 8080

A single worker process is assumed: sessions live in process memory unless
another SessionStore is injected.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .auth.routes import auth_router
from .auth.store import SessionStore, SessionSweeper
from .config import GatewayConfig, Settings, get_settings, resolve_config
from .dependencies import Gateway
from .errors import GatewayError
from .models import ErrorResponse, HealthResponse
from .proxy.routes import proxy_route


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Shared outbound client for provider and backend calls."""
    timeout = httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS, connect=10.0)
    return httpx.AsyncClient(timeout=timeout, follow_redirects=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Configure logging
        - Start the expired-session sweeper

    Shutdown:
        - Stop the sweeper
        - Close the outbound HTTP client if the app created it
    """
    settings: Settings = app.state.settings
    gateway: Gateway = app.state.gateway

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("bff_gateway.main")

    sweeper = SessionSweeper(gateway.store, settings.SESSION_SWEEP_INTERVAL_SECONDS)
    await sweeper.start()

    logger.info(
        "BFF gateway started",
        extra={
            "auth_server": gateway.config.auth_server_base_url,
            "services": [route.prefix for route in gateway.config.services],
        }
    )

    yield

    logger.info("Shutting down BFF gateway")
    await sweeper.stop()

    if app.state.owns_http_client:
        await gateway.http_client.aclose()

    logger.info("BFF gateway shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    config: Optional[GatewayConfig] = None,
    store: Optional[SessionStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Environment settings (loaded from the environment if omitted)
        config: Pre-built gateway config (resolved from ``settings`` if omitted)
        store: Session store (in-memory if omitted)
        http_client: Outbound HTTP client (created and owned by the app if omitted)

    Returns:
        FastAPI: Configured application instance

    Raises:
        ConfigurationError: If required configuration is missing
    """
    settings = settings or get_settings()
    config = config or resolve_config(settings)

    app = FastAPI(
        title="BFF Gateway",
        description="OAuth2/OIDC Backend-For-Frontend gateway and authenticated reverse proxy",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.owns_http_client = http_client is None
    app.state.gateway = Gateway(
        config,
        http_client=http_client or build_http_client(settings),
        store=store,
    )

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Service status and live session count."""
        return HealthResponse(
            status="ok",
            service="bff-gateway",
            version=__version__,
            sessions=await app.state.gateway.store.count(),
        )

    app.include_router(auth_router, prefix=settings.AUTH_PATH_PREFIX.rstrip("/"))

    # Catch-all for every method; must stay last
    app.router.routes.append(proxy_route)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.error, message=exc.detail).model_dump(),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unhandled errors and return a generic 500."""
        logger = logging.getLogger("bff_gateway.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="internal_server_error",
                message="An unexpected error occurred",
            ).model_dump(),
        )

    return app


def run() -> None:
    """Serve the gateway with uvicorn using environment settings."""
    settings = get_settings()

    uvicorn.run(
        "bff_gateway.main:create_app",
        factory=True,
        host=settings.GATEWAY_HOST,
        port=settings.GATEWAY_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
