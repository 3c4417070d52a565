from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "server.yaml"
DEFAULT_API_BASE_URL = "https://api.swipeone.com/api"

_API_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
_TRUTHY = {"1", "true", "yes", "on"}


def load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"MCP server config not found at {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping")
    return data


def is_production_env(environ: Optional[Mapping[str, str]] = None) -> bool:
    """True when ENVIRONMENT, APP_ENV or NODE_ENV is ``production`` (case-insensitive)."""
    env = os.environ if environ is None else environ
    return any(
        env.get(name, "").strip().lower() == "production"
        for name in ("ENVIRONMENT", "APP_ENV", "NODE_ENV")
    )


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _split_origins(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value or "").split(",")
    return tuple(o.strip() for o in items if o.strip())


@dataclass(frozen=True)
class ServerConfig:
    api_key: str
    api_base_url: str = DEFAULT_API_BASE_URL
    timeout_ms: int = 30_000
    retries: int = 2
    default_workspace_id: Optional[str] = None
    enable_rate_limiting: bool = True
    rate_limits: Mapping[str, Any] = field(default_factory=dict)
    log_level: str = "INFO"
    production: bool = False
    name: str = "crm-mcp-server"
    version: str = "1.0.0"
    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 9000
    auth_token: Optional[str] = None
    allowed_origins: Tuple[str, ...] = ()
    audit_log_path: Optional[str] = None

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


def _validate_api_key(api_key: str) -> str:
    if len(api_key) < 32:
        raise ConfigError("CRM_API_KEY: API key must be at least 32 characters")
    if not _API_KEY_PATTERN.match(api_key):
        raise ConfigError("CRM_API_KEY: API key contains invalid characters")
    return api_key


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}: expected an integer, got {value!r}") from None


def build_server_config(
    config: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """
    Merge the YAML sections with environment overrides. Environment wins.

    Resolved once at startup; the returned object is immutable.
    """
    cfg = config or {}
    env = os.environ if environ is None else environ
    server_cfg = cfg.get("server", {}) or {}
    crm_cfg = cfg.get("crm", {}) or {}
    workspace_cfg = cfg.get("workspace", {}) or {}
    rate_cfg = cfg.get("rate_limits", {}) or {}
    security_cfg = cfg.get("security", {}) or {}
    audit_cfg = cfg.get("audit", {}) or {}

    api_key = (env.get("CRM_API_KEY") or crm_cfg.get("api_key") or "").strip()
    transport = str(env.get("MCP_TRANSPORT") or server_cfg.get("transport", "stdio")).strip().lower()
    if transport not in ("stdio", "http"):
        raise ConfigError(f"MCP_TRANSPORT: expected 'stdio' or 'http', got {transport!r}")

    log_level = str(env.get("LOG_LEVEL") or server_cfg.get("log_level", "INFO")).upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "WARN", "ERROR"):
        raise ConfigError(f"LOG_LEVEL: unsupported level {log_level!r}")

    timeout_ms = _as_int("API_TIMEOUT", env.get("API_TIMEOUT") or crm_cfg.get("timeout_ms", 30_000))
    if timeout_ms <= 0:
        raise ConfigError("API_TIMEOUT: must be positive")

    enabled_raw = env.get("ENABLE_RATE_LIMITING")
    if enabled_raw is None:
        enabled_raw = rate_cfg.get("enabled", True)

    auth_cfg = security_cfg.get("auth", {}) or {}
    auth_token = (env.get("MCP_SERVER_TOKEN") or auth_cfg.get("token") or "").strip() or None

    return ServerConfig(
        api_key=_validate_api_key(api_key),
        api_base_url=str(env.get("CRM_API_BASE_URL") or crm_cfg.get("base_url") or DEFAULT_API_BASE_URL).rstrip("/"),
        timeout_ms=timeout_ms,
        retries=max(0, _as_int("crm.retries", crm_cfg.get("retries", 2))),
        default_workspace_id=(env.get("DEFAULT_WORKSPACE_ID") or workspace_cfg.get("default_id") or None),
        enable_rate_limiting=_flag(enabled_raw),
        rate_limits=MappingProxyType(dict(rate_cfg)),
        log_level="WARNING" if log_level == "WARN" else log_level,
        production=is_production_env(env),
        name=str(server_cfg.get("name", "crm-mcp-server")),
        transport=transport,
        host=str(env.get("MCP_SERVER_HOST") or server_cfg.get("host", "127.0.0.1")),
        port=_as_int("MCP_SERVER_PORT", env.get("MCP_SERVER_PORT") or server_cfg.get("port", 9000)),
        auth_token=auth_token,
        allowed_origins=_split_origins(env.get("MCP_ALLOWED_ORIGINS") or security_cfg.get("allowed_origins")),
        audit_log_path=(env.get("MCP_AUDIT_LOG") or audit_cfg.get("path") or None),
    )


def load_server_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    env = os.environ if environ is None else environ
    explicit = path or (Path(env["MCP_SERVER_CONFIG"]) if env.get("MCP_SERVER_CONFIG") else None)
    if explicit is not None:
        data = load_config(explicit)
    elif DEFAULT_CONFIG_PATH.exists():
        data = load_config(DEFAULT_CONFIG_PATH)
    else:
        data = {}
    return build_server_config(data, env)
