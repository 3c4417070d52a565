"""
Uniform result envelope for every tool call.

The protocol layer inspects ``isError`` to decide how the client frames the
text, so success and failure share one shape.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from mcp import types

from .errors import FieldError


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: str = "text"


@dataclass(frozen=True)
class ToolResult:
    content: Tuple[TextBlock, ...]
    is_error: bool = False
    metadata: Optional[Mapping[str, Any]] = None

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "content": [{"type": block.type, "text": block.text} for block in self.content],
        }
        if self.is_error:
            data["isError"] = True
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    def to_call_tool_result(self) -> types.CallToolResult:
        payload: Dict[str, Any] = {
            "content": [{"type": block.type, "text": block.text} for block in self.content],
            "isError": self.is_error,
        }
        if self.metadata:
            payload["_meta"] = dict(self.metadata)
        return types.CallToolResult.model_validate(payload)


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _freeze(metadata: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    return MappingProxyType(dict(metadata)) if metadata else None


def success_response(payload: Any, metadata: Optional[Mapping[str, Any]] = None) -> ToolResult:
    return ToolResult(content=(TextBlock(_dumps(payload)),), metadata=_freeze(metadata))


def error_response(
    message: str,
    details: Any = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> ToolResult:
    text = f"{message}\n\nDetails: {_dumps(details)}" if details else message
    return ToolResult(content=(TextBlock(text),), is_error=True, metadata=_freeze(metadata))


def validation_error_response(errors: Iterable[FieldError]) -> ToolResult:
    lines = "\n".join(f"- {err.render()}" for err in errors)
    return error_response(f"Validation failed:\n{lines}")
