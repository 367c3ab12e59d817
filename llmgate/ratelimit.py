"""In-memory sliding-window rate limiting."""
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional


@dataclass(frozen=True)
class RateLimitConfig:
    """Maximum number of requests allowed per window (seconds)."""
    limit: int
    window: float


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_time: float

    def retry_after(self, now: float) -> int:
        return max(0, math.ceil(self.reset_time - now))


RATE_LIMITS: Dict[str, RateLimitConfig] = {
    # Standard API routes
    "standard": RateLimitConfig(limit=60, window=60.0),
    # Expensive operations (generation)
    "expensive": RateLimitConfig(limit=10, window=60.0),
}


class SlidingWindowRateLimiter:
    """
    Per-client request counter. One instance is created with the app and
    shared by every request; nothing is kept at module level.
    """

    # Expired entries are swept at most this often (seconds)
    CLEANUP_INTERVAL = 300.0

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, list] = {}
        self._last_cleanup = clock()

    def now(self) -> float:
        return self._clock()

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """
        Count a request for ``identifier`` and report whether it is allowed.
        """
        now = self._clock()
        self._cleanup(now)

        entry = self._entries.get(identifier)
        if entry is None or now > entry[1]:
            reset_time = now + config.window
            self._entries[identifier] = [1, reset_time]
            return RateLimitResult(True, config.limit, config.limit - 1, reset_time)

        count, reset_time = entry
        if count >= config.limit:
            return RateLimitResult(False, config.limit, 0, reset_time)

        entry[0] = count + 1
        return RateLimitResult(True, config.limit, config.limit - entry[0], reset_time)

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < self.CLEANUP_INTERVAL:
            return
        self._last_cleanup = now
        for key in [k for k, (_, reset) in self._entries.items() if now > reset]:
            del self._entries[key]


def config_for_path(path: str) -> RateLimitConfig:
    if path.startswith("/generate"):
        return RATE_LIMITS["expensive"]
    return RATE_LIMITS["standard"]


def client_identifier(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """Client id from proxy headers, else the socket peer."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or "unknown"
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return fallback or "unknown"
