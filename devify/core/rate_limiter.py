"""
Sliding-window rate limiting per tool.

Only mutating or expensive tools have limits; anything without an entry in
rate_limits.yaml is unbounded.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from loguru import logger

from devify.config import load_config


@dataclass
class RateLimit:
    """Budget for one tool: at most `max_calls` per `window_ms`."""
    max_calls: int
    window_ms: int


@dataclass
class RateDecision:
    allowed: bool
    wait_seconds: float = 0.0
    message: str = ""


def load_rate_limits() -> Dict[str, RateLimit]:
    """Read limits from the rate_limits config (YAML + project + env overrides)."""
    limits = {}
    for tool, entry in (load_config("rate_limits") or {}).items():
        if not isinstance(entry, dict):
            continue
        try:
            limits[tool] = RateLimit(max_calls=int(entry["max"]), window_ms=int(entry["window_ms"]))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring invalid rate limit for '{tool}': {e}")
    return limits


class RateLimiter:
    """
    Tracks recent call timestamps per tool name.

    One instance is shared process-wide by default (see get_shared_rate_limiter),
    so concurrent sessions draw from the same budget. Tests and callers that
    need isolation construct their own instance.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimit]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            limits: Per-tool limits (defaults to rate_limits.yaml)
            clock: Returns the current time in seconds (defaults to time.monotonic)
        """
        self.limits = limits if limits is not None else load_rate_limits()
        self._clock = clock or time.monotonic
        self._calls: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def check(self, tool: str) -> RateDecision:
        """
        Record a call to `tool` if its budget allows it.

        A rejected call is not recorded.
        """
        limit = self.limits.get(tool)
        if limit is None:
            return RateDecision(allowed=True)

        window = limit.window_ms / 1000.0
        with self._lock:
            now = self._clock()
            calls = self._calls.setdefault(tool, deque())
            while calls and now - calls[0] >= window:
                calls.popleft()

            if len(calls) >= limit.max_calls:
                wait = max(0.0, window - (now - calls[0]))
                message = (
                    f"Rate limit reached for {tool}: {limit.max_calls} calls per "
                    f"{limit.window_ms // 1000}s. Try again in {wait:.0f}s."
                )
                logger.warning(message)
                return RateDecision(allowed=False, wait_seconds=wait, message=message)

            calls.append(now)
            return RateDecision(allowed=True)

    def reset(self, tool: Optional[str] = None):
        """Forget recorded calls for one tool, or all of them."""
        with self._lock:
            if tool:
                self._calls.pop(tool, None)
            else:
                self._calls.clear()


_shared_limiter: Optional[RateLimiter] = None
_shared_lock = threading.Lock()


def get_shared_rate_limiter() -> RateLimiter:
    """Process-wide limiter used when no limiter is injected."""
    global _shared_limiter
    with _shared_lock:
        if _shared_limiter is None:
            _shared_limiter = RateLimiter()
        return _shared_limiter
