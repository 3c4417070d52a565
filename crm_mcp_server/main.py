"""
Entry point for the CRM MCP server.

The stdio transport is the default; set MCP_TRANSPORT=http to serve the
FastAPI app (MCP under /mcp, /health, /metrics) with uvicorn.
"""
from __future__ import annotations

import asyncio
import sys

import uvicorn
from mcp.server.stdio import stdio_server

from .config import ServerConfig, load_server_config
from .http_app import create_app
from .observability import setup_logger
from .server import build_app_context, create_server


async def run_stdio(config: ServerConfig) -> None:
    async with build_app_context(config) as app_ctx:
        server = create_server(app_ctx)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())


async def run_http(config: ServerConfig) -> None:
    if config.production and not config.auth_token:
        raise RuntimeError(
            "MCP_SERVER_TOKEN is required in production. "
            "Set MCP_SERVER_TOKEN environment variable before starting the MCP server."
        )
    async with build_app_context(config) as app_ctx:
        app = create_app(app_ctx, create_server(app_ctx))
        uv_config = uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            log_level=config.log_level.lower(),
            server_header=False,
        )
        await uvicorn.Server(uv_config).serve()


def main() -> None:
    try:
        config = load_server_config()
    except (ValueError, FileNotFoundError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logger = setup_logger(config.log_level)
    try:
        if config.transport == "http":
            # stdout is free with the HTTP transport.
            print(f"Starting MCP server on http://{config.host}:{config.port}")
            print(f"MCP endpoint: http://{config.host}:{config.port}/mcp")
            print(f"Healthcheck: http://{config.host}:{config.port}/health")
            asyncio.run(run_http(config))
        else:
            logger.info("CRM MCP server running on stdio")
            asyncio.run(run_stdio(config))
    except KeyboardInterrupt:
        print("\nServer shutdown requested...", file=sys.stderr)
        sys.exit(0)
    except Exception as e:
        logger.error("Fatal error starting server", exc_info=not config.production)
        print(f"Failed to start MCP server: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
