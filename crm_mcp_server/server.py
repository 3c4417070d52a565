"""
MCP protocol surface: tool listing, tool calls and the assistant prompt.

All tool calls go through ``ToolDispatcher``; the protocol-level input
validation of the SDK is switched off so that rate limiting runs before
argument validation.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from mcp import types
from mcp.server import Server

from . import prompts
from .config import ServerConfig
from .crm_client import CRMClient
from .dispatcher import ToolDispatcher
from .observability import AuditLogger, InMemoryMetrics
from .rate_limits import RateLimiter
from .schemas import SCHEMAS
from .tools import build_handlers, tool_definitions
from .workspace import WORKSPACE_EXEMPT_TOOLS, WorkspaceResolver, extract_oauth_context

logger = logging.getLogger("crm_mcp_server.server")


@dataclass
class AppContext:
    config: ServerConfig
    client: CRMClient
    rate_limiter: RateLimiter
    dispatcher: ToolDispatcher
    metrics: InMemoryMetrics
    audit: Optional[AuditLogger] = None


@asynccontextmanager
async def build_app_context(
    config: ServerConfig,
    client: Optional[CRMClient] = None,
) -> AsyncIterator[AppContext]:
    """Wire the process-wide collaborators once and close the CRM client on exit."""
    crm_client = client or CRMClient(
        base_url=config.api_base_url,
        api_key=config.api_key,
        timeout=config.timeout_seconds,
        retries=config.retries,
    )
    rate_limiter = RateLimiter.from_config(config.rate_limits, enabled=config.enable_rate_limiting)
    metrics = InMemoryMetrics()
    audit = AuditLogger(path=config.audit_log_path) if config.audit_log_path else None
    dispatcher = ToolDispatcher(
        rate_limiter=rate_limiter,
        handlers=build_handlers(crm_client),
        schemas=SCHEMAS,
        workspace_resolver=WorkspaceResolver(config.default_workspace_id),
        exempt_tools=WORKSPACE_EXEMPT_TOOLS,
        metrics=metrics,
        audit=audit,
        include_tracebacks=not config.production,
    )
    logger.info(
        "Initialized CRM MCP server (base_url=%s, rate_limiting=%s, default_workspace=%s)",
        config.api_base_url,
        rate_limiter.enabled,
        bool(config.default_workspace_id),
    )
    try:
        yield AppContext(
            config=config,
            client=crm_client,
            rate_limiter=rate_limiter,
            dispatcher=dispatcher,
            metrics=metrics,
            audit=audit,
        )
    finally:
        await crm_client.aclose()


def _request_meta(server: Server) -> Any:
    try:
        return server.request_context.meta
    except LookupError:
        return None


def create_server(app_ctx: AppContext) -> Server:
    server: Server = Server(app_ctx.config.name, version=app_ctx.config.version)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        tools = tool_definitions()
        logger.debug("Listing available tools (count=%d)", len(tools))
        return tools

    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
        oauth = extract_oauth_context(_request_meta(server))
        result = await app_ctx.dispatcher.dispatch(
            name,
            arguments,
            oauth_token=oauth.token if oauth else None,
        )
        return result.to_call_tool_result()

    @server.list_prompts()
    async def list_prompts() -> List[types.Prompt]:
        return prompts.list_prompts()

    @server.get_prompt()
    async def get_prompt(name: str, arguments: Optional[Dict[str, str]]) -> types.GetPromptResult:
        return prompts.get_prompt(name)

    return server
