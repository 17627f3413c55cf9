"""
FastAPI Gateway Application Factory
===================================

This is the main entry point for the authenticated forwarding gateway that
sits between the browser intercept shim and a pool of upstream proxy nodes.

Architecture:
    Browser shim → Gateway (this service) → Upstream node /proxy?url=... → Target

Routers:
    - /proxy          : Authenticated forwarding endpoint (any method)
    - /validate-key   : Token check for front ends
    - /health         : Health check endpoint

Environment Variables:
    - PROXY_NODES: Comma-separated upstream base URLs (required)
    - VALID_TOKENS: Comma-separated bearer tokens (empty rejects everything)
    - ROTATION_MODE: round_robin (default) or sticky_by_ip
    - PROXY_RATE_LIMIT: Requests per minute per client IP (default: 120)
    - ALLOWED_ORIGINS: Comma-separated CORS origins (empty allows any)
    - UPSTREAM_TIMEOUT_SECONDS: Upstream call timeout (default: 30)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn proxy_gateway.app.main:create_app --factory --reload --port 3000

    Production:
        uvicorn proxy_gateway.app.main:create_app --factory --host 0.0.0.0 --port 3000 --workers 4

    Note that each worker keeps its own rate-limit windows and rotation counter.
"""

import logging
import re
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .auth import TokenAuthenticator, auth_router
from .config import Settings, get_settings, validate_configuration
from .errors import GatewayError
from .models import GatewayConfig, HealthResponse
from .proxy import proxy_router
from .proxy.engine import ForwardingEngine
from .proxy.ratelimit import RateLimiter
from .proxy.selector import NodeSelector

SERVICE_NAME = "proxy-gateway"
SERVICE_VERSION = "1.0.0"

CORS_ALLOW_METHODS = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type,Authorization,x-proxy-auth"


# Query-string credentials in access log lines
TOKEN_QUERY_PATTERN = re.compile(r"([?&]token=)[^&#\s]*")
REDACTED = "[REDACTED]"


def redact_token(value: str) -> str:
    """Mask the value of a `token` query parameter inside a path or URL."""
    return TOKEN_QUERY_PATTERN.sub(rf"\g<1>{REDACTED}", value)


class TokenRedactingFilter(logging.Filter):
    """
    Strips bearer tokens from uvicorn access log records.

    uvicorn logs the request path with its query string, which carries the
    token when a caller authenticates with ?token= instead of x-proxy-auth.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact_token(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        if isinstance(record.msg, str):
            record.msg = redact_token(record.msg)
        return True


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, TokenRedactingFilter) for f in access_logger.filters):
        access_logger.addFilter(TokenRedactingFilter())


class AppState:
    """
    Per-application state container.

    Holds the immutable GatewayConfig and the collaborators that carry the
    gateway's shared mutable state (rotation counter, rate windows).
    """

    def __init__(self, settings: Settings, config: GatewayConfig):
        self.settings = settings
        self.config = config
        self.authenticator = TokenAuthenticator(config.valid_tokens)
        self.selector = NodeSelector(config.nodes, config.rotation_mode)
        self.rate_limiter = RateLimiter(config.rate_limit)
        self.upstream_client: Optional[httpx.AsyncClient] = None
        self.engine: Optional[ForwardingEngine] = None


class GatewayCORSMiddleware(BaseHTTPMiddleware):
    """
    CORS handling for every response.

    Reflects the caller's Origin when it is on the allow-list, or answers `*`
    when no allow-list is configured. OPTIONS preflights are answered with an
    empty 204 without reaching the routers.
    """

    def __init__(self, app, allowed_origins=()):
        super().__init__(app)
        self.allowed_origins = tuple(allowed_origins)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=204)
        else:
            response = await call_next(request)

        origin = request.headers.get("origin")
        if not self.allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = "*"
        elif origin and origin in self.allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers.append("Vary", "Origin")

        response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
        return response


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (shared upstream httpx client)
        - CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use; loaded from the environment when omitted
        transport: Optional httpx transport for the upstream client

    Returns:
        FastAPI: Configured application instance

    Raises:
        ConfigurationError: If no upstream node is configured
    """
    settings = settings or get_settings()
    # Fails fast: a gateway without upstream nodes must not serve traffic
    config = settings.to_gateway_config()
    app_state = AppState(settings, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: configure logging, report configuration problems, open the
        shared upstream client and build the forwarding engine.

        Shutdown: close the upstream client.
        """
        setup_logging(settings.LOG_LEVEL)
        logger = logging.getLogger("proxy_gateway.main")

        status = validate_configuration(settings)
        for warning in status["warnings"]:
            logger.warning(f"WARNING: {warning}")

        app_state.upstream_client = httpx.AsyncClient(transport=transport)
        app_state.engine = ForwardingEngine(
            config,
            app_state.upstream_client,
            authenticator=app_state.authenticator,
            selector=app_state.selector,
            rate_limiter=app_state.rate_limiter,
        )

        logger.info(
            "Proxy gateway started",
            extra={
                "nodes": len(config.nodes),
                "rotation_mode": config.rotation_mode.value,
                "rate_limit": config.rate_limit,
            }
        )

        yield

        logger.info("Shutting down proxy gateway")
        await app_state.upstream_client.aclose()
        app_state.upstream_client = None
        app_state.engine = None

    app = FastAPI(
        title="Proxy Gateway",
        description="Authenticated forwarding gateway with rotating upstream proxy nodes",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.app_state = app_state

    app.add_middleware(GatewayCORSMiddleware, allowed_origins=config.allowed_origins)

    app.include_router(proxy_router, tags=["Proxy"])
    app.include_router(auth_router, tags=["Authentication"])

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Report configured node count and rotation mode. No auth required."""
        return HealthResponse(
            ok=True,
            nodes=len(config.nodes),
            rotation_mode=config.rotation_mode,
            region=config.region,
        )

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        """Service metadata and available endpoints."""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {
                "health": "/health",
                "validate_key": "/validate-key",
                "proxy": "/proxy?url=<absolute-url>",
            }
        }

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> PlainTextResponse:
        """Map pipeline failures to their fixed plain-text payloads."""
        return PlainTextResponse(exc.message, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger = logging.getLogger("proxy_gateway.main")
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
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            }
        )

    return app


def main() -> None:
    """
    Console entry point.

    Runs the gateway with uvicorn using the app factory, so configuration
    is read (and validated) when the server starts rather than at import.
    """
    settings = get_settings()

    uvicorn.run(
        "proxy_gateway.app.main:create_app",
        factory=True,
        host=settings.GATEWAY_HOST,
        port=settings.GATEWAY_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    main()
