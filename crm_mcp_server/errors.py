from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

if TYPE_CHECKING:
    from .rate_limits import RateLimitConfig


class MCPError(Exception):
    """Base exception for all MCP server errors."""
    pass


class MCPClientError(MCPError):
    """Client-side errors - caller input or usage issues."""
    pass


class MCPServerError(MCPError):
    """Server-side errors - upstream or internal issues."""
    pass


class ConfigError(ValueError):
    """Invalid process configuration detected at startup."""
    pass


@dataclass(frozen=True)
class FieldError:
    path: str
    message: str

    def render(self) -> str:
        return f"{self.path or 'arguments'}: {self.message}"


class RateLimitExceeded(MCPClientError):
    def __init__(self, tool_name: str, retry_after_seconds: int, limit: Optional["RateLimitConfig"] = None) -> None:
        super().__init__(f"Rate limit exceeded. Please try again in {retry_after_seconds} seconds.")
        self.tool_name = tool_name
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit


class ToolValidationError(MCPClientError):
    """Carries every field-level violation found, not just the first."""

    def __init__(self, tool_name: str, errors: Sequence[FieldError]) -> None:
        self.tool_name = tool_name
        self.errors: List[FieldError] = list(errors)
        super().__init__(
            f"Invalid arguments for {tool_name}: " + "; ".join(e.render() for e in self.errors)
        )


class UnknownToolError(MCPClientError):
    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class WorkspaceResolutionError(MCPClientError):
    pass


class InvalidIdentifierError(MCPClientError):
    """A path identifier failed sanitisation before reaching the CRM API."""
    pass


class CRMAPIError(MCPServerError):
    """The CRM HTTP call failed, with upstream status and body when available."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class InternalToolError(MCPServerError):
    """Registration inconsistency, e.g. a handler without a schema."""
    pass
