"""
Tool call dispatch pipeline.

Every call runs the same fixed sequence and stops at the first failure:

1. rate limit check
2. handler lookup
3. schema lookup
4. argument validation
5. workspace resolution (skipped for contact/note/task scoped tools)
6. handler execution
7. envelope formatting

Each failure mode is turned into an error envelope here, so the protocol
layer never sees a raw exception.
"""
from __future__ import annotations

import logging
import time
from typing import Any, FrozenSet, Mapping, Optional, Type

from .errors import (
    CRMAPIError,
    InternalToolError,
    RateLimitExceeded,
    ToolValidationError,
    UnknownToolError,
    WorkspaceResolutionError,
)
from .observability import AuditLogger, InMemoryMetrics, sanitize_log_data
from .rate_limits import RateLimiter
from .responses import ToolResult, error_response, validation_error_response
from .schemas import ToolInput, validate_arguments
from .tools.base import ToolContext, ToolHandler, api_error_response
from .trace_context import correlation_scope
from .workspace import WORKSPACE_EXEMPT_TOOLS, WorkspaceResolver

logger = logging.getLogger("crm_mcp_server.dispatcher")


class ToolDispatcher:
    def __init__(
        self,
        rate_limiter: RateLimiter,
        handlers: Mapping[str, ToolHandler],
        schemas: Mapping[str, Type[ToolInput]],
        workspace_resolver: WorkspaceResolver,
        exempt_tools: FrozenSet[str] = WORKSPACE_EXEMPT_TOOLS,
        metrics: Optional[InMemoryMetrics] = None,
        audit: Optional[AuditLogger] = None,
        include_tracebacks: bool = True,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.handlers = handlers
        self.schemas = schemas
        self.workspace_resolver = workspace_resolver
        self.exempt_tools = frozenset(str(t) for t in exempt_tools)
        self.metrics = metrics
        self.audit = audit
        self.include_tracebacks = include_tracebacks

    async def dispatch(
        self,
        name: str,
        arguments: Optional[Mapping[str, Any]] = None,
        oauth_token: Optional[str] = None,
    ) -> ToolResult:
        with correlation_scope() as correlation_id:
            start = time.perf_counter()
            log_extra: dict[str, Any] = {"tool": name, "correlation_id": correlation_id}
            logger.info("Tool execution requested", extra=log_extra)
            workspace_id = ""
            try:
                handler, params, tool_context = self._prepare(name, arguments, oauth_token)
                workspace_id = tool_context.workspace_id
                log_extra["workspace"] = workspace_id
                result = await handler.execute(params, tool_context)
                status = "tool_error" if result.is_error else "ok"
                error_code = "TOOL_ERROR" if result.is_error else None

            except RateLimitExceeded as exc:
                status, error_code = "rate_limited", "RATE_LIMIT_EXCEEDED"
                limit = exc.limit.to_dict() if exc.limit else None
                result = error_response(
                    str(exc),
                    {"retryAfter": exc.retry_after_seconds, "limit": limit},
                    metadata={"retryAfterSeconds": exc.retry_after_seconds, "limit": limit},
                )
                logger.warning("Rate limit exceeded for tool", extra=log_extra)

            except UnknownToolError as exc:
                status, error_code = "unknown_tool", "UNKNOWN_TOOL"
                result = error_response(str(exc))
                logger.warning("Unknown tool requested", extra=log_extra)

            except InternalToolError as exc:
                status, error_code = "internal_error", "INTERNAL_ERROR"
                result = error_response(str(exc))
                logger.error("Tool registration is inconsistent: %s", exc, extra=log_extra)

            except ToolValidationError as exc:
                status, error_code = "validation_error", "VALIDATION_ERROR"
                result = validation_error_response(exc.errors)
                logger.warning(
                    "Validation failed: %s",
                    sanitize_log_data([{"path": e.path, "message": e.message} for e in exc.errors]),
                    extra=log_extra,
                )

            except WorkspaceResolutionError as exc:
                status, error_code = "workspace_error", "WORKSPACE_REQUIRED"
                result = error_response(str(exc))
                logger.warning("Failed to resolve workspace ID", extra=log_extra)

            except CRMAPIError as exc:
                status, error_code = "backend_error", "BACKEND_ERROR"
                result = api_error_response(exc)
                logger.error("CRM API error escaped handler: %s", exc, extra=log_extra)

            except Exception:
                status, error_code = "error", "INTERNAL_ERROR"
                result = error_response(f"An unexpected error occurred while executing {name}")
                logger.error(
                    "Unexpected error during tool execution",
                    extra=log_extra,
                    exc_info=self.include_tracebacks,
                )

            duration_ms = (time.perf_counter() - start) * 1000.0
            self._observe(name, workspace_id, status, error_code, duration_ms, correlation_id, result)
            logger.info(
                "Tool execution completed (status=%s, isError=%s)",
                status,
                result.is_error,
                extra={**log_extra, "duration_ms": round(duration_ms, 2)},
            )
            return result

    def _prepare(
        self,
        name: str,
        arguments: Optional[Mapping[str, Any]],
        oauth_token: Optional[str],
    ) -> tuple[ToolHandler, ToolInput, ToolContext]:
        decision = self.rate_limiter.check_limit(name)
        if not decision.allowed:
            raise RateLimitExceeded(name, decision.retry_after_seconds or 0, decision.limit)

        handler = self.handlers.get(name)
        if handler is None:
            raise UnknownToolError(name)

        schema = self.schemas.get(name)
        if schema is None:
            raise InternalToolError(f"Internal error: No validation schema for tool {name}")

        params = validate_arguments(name, arguments, schema)

        workspace_id = ""
        if name not in self.exempt_tools:
            workspace_id = self.workspace_resolver.resolve(getattr(params, "workspace_id", None))
            logger.debug("Resolved workspace ID", extra={"tool": name, "workspace": workspace_id})

        return handler, params, ToolContext(workspace_id=workspace_id, oauth_token=oauth_token)

    def _observe(
        self,
        name: str,
        workspace_id: str,
        status: str,
        error_code: Optional[str],
        duration_ms: float,
        correlation_id: str,
        result: ToolResult,
    ) -> None:
        if self.metrics is not None:
            self.metrics.record(name, duration_ms, error=result.is_error)
        if self.audit is not None:
            try:
                self.audit.log_call(
                    tool=name,
                    workspace=workspace_id,
                    status=status,
                    duration_ms=duration_ms,
                    error_code=error_code,
                    correlation_id=correlation_id,
                )
            except OSError as exc:
                logger.warning("Failed to write audit entry: %s", exc, extra={"tool": name})
