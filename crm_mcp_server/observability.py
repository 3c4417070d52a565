from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .trace_context import get_correlation_id

LOGGER_NAME = "crm_mcp_server"

SENSITIVE_KEYS = (
    "apikey",
    "api_key",
    "x-api-key",
    "authorization",
    "password",
    "token",
    "secret",
    "cookie",
    "session",
    "credentials",
)
MAX_LOGGED_STRING = 1000


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(s in lowered for s in SENSITIVE_KEYS)


def sanitize_log_data(data: Any) -> Any:
    """Redact secrets and truncate long strings before structured data is logged."""
    if isinstance(data, dict):
        clean: Dict[str, Any] = {}
        for key, value in data.items():
            if _is_sensitive(str(key)):
                clean[key] = "[REDACTED]"
            else:
                clean[key] = sanitize_log_data(value)
        return clean
    if isinstance(data, (list, tuple)):
        return [sanitize_log_data(item) for item in data]
    if isinstance(data, str) and len(data) > MAX_LOGGED_STRING:
        return data[:MAX_LOGGED_STRING] + "... [truncated]"
    return data


class StructuredFormatter(logging.Formatter):
    """JSON-line formatter that tolerates records without the structured fields."""

    FIELDS = ("tool", "workspace", "correlation_id", "duration_ms")

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
        }
        for field in self.FIELDS:
            entry[field] = getattr(record, field, "")
        entry["msg"] = record.getMessage()
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class CorrelationIdFilter(logging.Filter):
    """Fill correlation_id from the active scope when a record does not set one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id() or ""
        return True


def setup_logger(level: str = "INFO") -> logging.Logger:
    """
    Configure the package logger once. Output goes to stderr: with the stdio
    transport stdout carries the MCP protocol stream.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if logger.handlers:
        return logger
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(CorrelationIdFilter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


class AuditLogger:
    def __init__(self, path: str = "logs/audit.log") -> None:
        self._path = path
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    def log_call(
        self,
        *,
        tool: str,
        workspace: str,
        status: str,
        duration_ms: float,
        error_code: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        entry: Dict[str, Any] = {
            "ts": time.time(),
            "tool": tool,
            "workspace": workspace,
            "status": status,
            "duration_ms": float(duration_ms),
            "error_code": error_code,
            "correlation_id": correlation_id,
        }
        line = json.dumps(entry, ensure_ascii=False, separators=(",", ":"))
        with self._lock:
            with open(self._path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")


@dataclass
class ToolMetrics:
    calls: int = 0
    errors: int = 0
    total_latency_ms: float = 0.0

    def observe(self, duration_ms: float, error: bool) -> None:
        self.calls += 1
        self.total_latency_ms += float(duration_ms)
        if error:
            self.errors += 1

    @property
    def avg_latency_ms(self) -> float:
        if self.calls == 0:
            return 0.0
        return self.total_latency_ms / self.calls


class InMemoryMetrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tools: Dict[str, ToolMetrics] = {}

    def record(self, tool: str, duration_ms: float, error: bool) -> None:
        with self._lock:
            metrics = self._tools.setdefault(tool, ToolMetrics())
            metrics.observe(duration_ms, error)

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {
                name: {
                    "calls": float(m.calls),
                    "errors": float(m.errors),
                    "avg_latency_ms": float(m.avg_latency_ms),
                }
                for name, m in self._tools.items()
            }

    def to_prometheus(self) -> str:
        snapshot = sorted(self.snapshot().items())
        lines = [
            "# HELP crm_mcp_server_healthy MCP server health status",
            "# TYPE crm_mcp_server_healthy gauge",
            "crm_mcp_server_healthy 1",
        ]
        families = (
            ("crm_mcp_tool_calls_total", "counter", "Total number of tool calls", "calls"),
            ("crm_mcp_tool_errors_total", "counter", "Total number of tool calls returning an error", "errors"),
            ("crm_mcp_tool_avg_latency_ms", "gauge", "Average tool latency in milliseconds", "avg_latency_ms"),
        )
        for metric, kind, help_text, key in families:
            lines.append(f"# HELP {metric} {help_text}")
            lines.append(f"# TYPE {metric} {kind}")
            for tool, values in snapshot:
                lines.append(f'{metric}{{tool="{tool}"}} {values[key]}')
        return "\n".join(lines) + "\n"
