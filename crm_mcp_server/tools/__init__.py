"""
CRM tool handlers, one module per CRM domain (contacts, notes, tasks).
"""
from __future__ import annotations

from .base import CRMToolHandler, ToolContext, ToolHandler, ToolName, api_error_response
from .registry import DESCRIPTIONS, build_handlers, tool_definitions

__all__ = [
    "CRMToolHandler",
    "DESCRIPTIONS",
    "ToolContext",
    "ToolHandler",
    "ToolName",
    "api_error_response",
    "build_handlers",
    "tool_definitions",
]
