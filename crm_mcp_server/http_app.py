"""
FastAPI/ASGI app for the HTTP transport.

- Bearer token auth middleware
- Origin allowlist middleware
- MCP streamable HTTP mounted under /mcp
- Healthcheck under /health, Prometheus metrics under /metrics
"""
from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Iterable, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from mcp.server import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from .server import AppContext

logger = logging.getLogger("crm_mcp_server.http_app")

PUBLIC_PATHS = ("/health", "/metrics")


def _normalize_origin(origin: str) -> str:
    """Lowercase and strip protocol and path, leaving host[:port]."""
    origin_lower = origin.lower().strip()
    for proto in ("https://", "http://"):
        if origin_lower.startswith(proto):
            origin_lower = origin_lower[len(proto):]
    return origin_lower.split("/")[0]


class BearerTokenAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, expected_token: Optional[str] = None, production: bool = False):
        super().__init__(app)
        self.expected_token = (expected_token or "").strip()
        self.production = production

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in PUBLIC_PATHS or not path.startswith("/mcp"):
            return await call_next(request)

        if self.production and not self.expected_token:
            logger.error("MCP_SERVER_TOKEN not set in production")
            return JSONResponse(
                {"error": "server_error", "message": "MCP_SERVER_TOKEN not configured"},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        if self.expected_token:
            auth_header = request.headers.get("authorization", "")
            if not auth_header.startswith("Bearer "):
                logger.warning("Missing or invalid Authorization header for %s %s", request.method, path)
                return JSONResponse(
                    {"error": "unauthorized", "message": "Missing or invalid Authorization header"},
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    headers={"WWW-Authenticate": "Bearer"},
                )
            if not hmac.compare_digest(auth_header[7:], self.expected_token):
                logger.warning("Invalid token for %s %s", request.method, path)
                return JSONResponse(
                    {"error": "unauthorized", "message": "Invalid token"},
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    headers={"WWW-Authenticate": "Bearer"},
                )

        return await call_next(request)


class OriginAllowlistMiddleware(BaseHTTPMiddleware):
    """Rejects browser requests from origins outside the allowlist (DNS rebinding)."""

    def __init__(self, app: ASGIApp, allowed_origins: Iterable[str] = ()):
        super().__init__(app)
        self.allowed_origins = [_normalize_origin(o) for o in allowed_origins if o.strip()]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in PUBLIC_PATHS or not path.startswith("/mcp") or not self.allowed_origins:
            return await call_next(request)

        # Missing Origin means server-to-server traffic.
        origin = request.headers.get("origin", "")
        if origin and _normalize_origin(origin) not in self.allowed_origins:
            logger.warning("Origin %s not in allowlist for %s %s", origin, request.method, path)
            return JSONResponse(
                {"error": "forbidden", "message": "Origin not allowed"},
                status_code=status.HTTP_403_FORBIDDEN,
            )
        return await call_next(request)


def create_app(app_ctx: AppContext, server: Server) -> FastAPI:
    config = app_ctx.config
    session_manager = StreamableHTTPSessionManager(app=server)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with session_manager.run():
            logger.info("Streamable HTTP session manager started")
            yield

    app = FastAPI(
        title="CRM MCP Server",
        description="MCP tool server for CRM contacts, notes and tasks",
        version=config.version,
        lifespan=lifespan,
    )
    app.add_middleware(BearerTokenAuthMiddleware, expected_token=config.auth_token, production=config.production)
    app.add_middleware(OriginAllowlistMiddleware, allowed_origins=config.allowed_origins)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        limiter = app_ctx.rate_limiter
        rate_limits = {}
        for tool in limiter.known_tools():
            current = limiter.get_status(tool)
            rate_limits[tool] = {"tokens": current.tokens, "limit": current.limit.to_dict()}
        return {
            "ok": True,
            "status": "healthy",
            "server": config.name,
            "version": config.version,
            "rate_limiting": limiter.enabled,
            "rate_limits": rate_limits,
        }

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=app_ctx.metrics.to_prometheus(), media_type="text/plain; version=0.0.4")

    async def handle_mcp(scope: Scope, receive: Receive, send: Send) -> None:
        await session_manager.handle_request(scope, receive, send)

    app.mount("/mcp", app=handle_mcp)
    return app
