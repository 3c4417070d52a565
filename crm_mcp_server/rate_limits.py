from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger("crm_mcp_server.rate_limits")


@dataclass(frozen=True)
class RateLimitConfig:
    capacity: int
    window_ms: int

    def to_dict(self) -> Dict[str, int]:
        return {"capacity": self.capacity, "windowMs": self.window_ms}


DEFAULT_WINDOW_MS = 60_000

DEFAULT_LIMIT = RateLimitConfig(capacity=10, window_ms=DEFAULT_WINDOW_MS)

DEFAULT_LIMITS: Mapping[str, RateLimitConfig] = MappingProxyType({
    "search_contacts": RateLimitConfig(20, DEFAULT_WINDOW_MS),
    "retrieve_all_contacts": RateLimitConfig(20, DEFAULT_WINDOW_MS),
    "get_contact_properties": RateLimitConfig(30, DEFAULT_WINDOW_MS),
    "create_note": RateLimitConfig(30, DEFAULT_WINDOW_MS),
    "update_note": RateLimitConfig(30, DEFAULT_WINDOW_MS),
    "retrieve_notes": RateLimitConfig(30, DEFAULT_WINDOW_MS),
    "create_task": RateLimitConfig(30, DEFAULT_WINDOW_MS),
    "update_task": RateLimitConfig(30, DEFAULT_WINDOW_MS),
    "retrieve_all_tasks": RateLimitConfig(20, DEFAULT_WINDOW_MS),
})


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: Optional[int] = None
    limit: Optional[RateLimitConfig] = None


@dataclass(frozen=True)
class RateLimitStatus:
    tokens: int
    limit: RateLimitConfig


@dataclass
class TokenBucket:
    tokens: float
    last_refill: float

    def refill(self, config: RateLimitConfig, now: float) -> None:
        """Continuous linear refill; a full window elapsed restores capacity."""
        elapsed_ms = (now - self.last_refill) * 1000.0
        if elapsed_ms >= config.window_ms:
            self.tokens = float(config.capacity)
        elif elapsed_ms > 0:
            added = config.capacity * (elapsed_ms / config.window_ms)
            self.tokens = min(float(config.capacity), self.tokens + added)
        self.last_refill = now


def parse_limit(raw: Any, fallback: RateLimitConfig) -> RateLimitConfig:
    if not isinstance(raw, dict):
        return fallback
    capacity = int(raw.get("capacity", raw.get("requests", fallback.capacity)))
    window_ms = int(raw.get("window_ms", raw.get("window", fallback.window_ms)))
    if capacity < 1 or window_ms < 1:
        raise ValueError(f"Rate limit capacity and window must be positive, got {raw!r}")
    return RateLimitConfig(capacity=capacity, window_ms=window_ms)


class RateLimiter:
    """Per-tool token buckets. Buckets are created lazily and live as long as the limiter."""

    def __init__(
        self,
        limits: Optional[Mapping[str, RateLimitConfig]] = None,
        default: RateLimitConfig = DEFAULT_LIMIT,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limits: Mapping[str, RateLimitConfig] = MappingProxyType(
            dict(DEFAULT_LIMITS if limits is None else limits)
        )
        self._default = default
        self._enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: Dict[str, TokenBucket] = {}
        logger.info("Rate limiter initialized (enabled=%s)", enabled)

    @classmethod
    def from_config(cls, cfg: Optional[Mapping[str, Any]], enabled: bool = True, **kwargs: Any) -> "RateLimiter":
        cfg = cfg or {}
        default = parse_limit(cfg.get("default"), DEFAULT_LIMIT)
        limits: Dict[str, RateLimitConfig] = dict(DEFAULT_LIMITS)
        for name, raw in (cfg.get("tools") or {}).items():
            limits[str(name)] = parse_limit(raw, limits.get(str(name), default))
        return cls(limits=limits, default=default, enabled=enabled, **kwargs)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)
        logger.info("Rate limiting status changed (enabled=%s)", self._enabled)

    def limit_for(self, tool_name: str) -> RateLimitConfig:
        return self._limits.get(tool_name, self._default)

    def known_tools(self) -> list[str]:
        return sorted(self._limits.keys())

    def check_limit(self, tool_name: str) -> RateLimitDecision:
        if not self._enabled:
            return RateLimitDecision(allowed=True)

        config = self.limit_for(tool_name)
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(tool_name)
            if bucket is None:
                # Checked before tool lookup, so unregistered names get a default-limit bucket too.
                bucket = TokenBucket(tokens=float(config.capacity), last_refill=now)
                self._buckets[tool_name] = bucket
            bucket.refill(config, now)
            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return RateLimitDecision(allowed=True, limit=config)

        # Fixed full-window estimate rather than time until the next token.
        retry_after = math.ceil(config.window_ms / 1000)
        logger.warning(
            "Rate limit exceeded for %s (capacity=%d window_ms=%d retry_after=%ds)",
            tool_name,
            config.capacity,
            config.window_ms,
            retry_after,
            extra={"tool": tool_name},
        )
        return RateLimitDecision(allowed=False, retry_after_seconds=retry_after, limit=config)

    def reset(self, tool_name: Optional[str] = None) -> None:
        with self._lock:
            if tool_name is None:
                self._buckets.clear()
                logger.debug("All rate limits reset")
            else:
                self._buckets.pop(tool_name, None)
                logger.debug("Rate limit reset for %s", tool_name)

    def get_status(self, tool_name: str) -> RateLimitStatus:
        config = self.limit_for(tool_name)
        with self._lock:
            bucket = self._buckets.get(tool_name)
            if bucket is None:
                return RateLimitStatus(tokens=config.capacity, limit=config)
            probe = replace(bucket)
        probe.refill(config, self._clock())
        return RateLimitStatus(tokens=math.floor(probe.tokens), limit=config)
