"""
Token bucket pacing for Spotify Web API calls.

Hey future me - every request the SpotifyClient sends waits for a token here.
One limiter is shared by all users' syncs in a process (it's injected, not a module
global), so ten concurrent syncs still share one request budget.

The bucket holds `burst` tokens and regains `per_second` of them per second. A call
takes one token; an empty bucket means sleeping until the next one has trickled in.

429 handling: the client does NOT retry. The 429 becomes a SpotifyApiError and the
fetcher marks that sub-resource as skipped. But the limiter still learns from it -
cool_down() stops handing out tokens until Retry-After has passed, so the remaining
calls of the sync don't run into the same wall.

USAGE:
    limiter = RateLimiter.for_spotify()

    async with limiter:
        response = await client.get(url)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Bucket size, refill speed and 429 cooldown bounds.

    Spotify allows roughly 180 requests per rolling 30s window per app; 2/s
    sustained with a burst of 10 leaves room for several concurrent syncs.
    """

    burst: int = 10
    per_second: float = 2.0
    max_cooldown_seconds: float = 600.0  # Retry-After can be several minutes
    fallback_cooldown_seconds: float = 1.0  # 429 without Retry-After
    cooldown_multiplier: float = 2.0


@dataclass
class RateLimiter:
    """Token bucket with a 429 cooldown window.

    Attributes:
        config: Bucket and cooldown parameters
        name: Shows up in log lines
    """

    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    name: str = "default"

    _tokens: float = field(default=0.0, init=False)
    _refilled_at: float = field(default_factory=time.monotonic, init=False)
    _cooldown_until: float = field(default=0.0, init=False)
    _next_cooldown: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        # Start full so the first burst of a sync goes out immediately
        self._tokens = float(self.config.burst)
        self._next_cooldown = self.config.fallback_cooldown_seconds

    @classmethod
    def for_spotify(cls, burst: int = 10, per_second: float = 2.0) -> "RateLimiter":
        """Limiter tuned for the Spotify Web API."""
        return cls(
            config=RateLimiterConfig(burst=burst, per_second=per_second),
            name="spotify",
        )

    def _refill(self, now: float) -> None:
        earned = (now - self._refilled_at) * self.config.per_second
        self._tokens = min(float(self.config.burst), self._tokens + earned)
        self._refilled_at = now

    def _wait_time(self, now: float) -> float:
        """Seconds until a token may be taken (0 if right now)."""
        if now < self._cooldown_until:
            return self._cooldown_until - now
        if self._tokens >= 1.0:
            return 0.0
        return (1.0 - self._tokens) / self.config.per_second

    async def acquire(self) -> None:
        """Take one token, sleeping as long as the bucket is empty or cooling down."""
        while True:
            async with self._lock:
                now = time.monotonic()
                self._refill(now)
                wait = self._wait_time(now)
                if wait <= 0:
                    self._tokens -= 1.0
                    return
            # Sleep outside the lock so cool_down() and other callers aren't blocked
            logger.debug(f"RateLimiter[{self.name}]: waiting {wait:.2f}s for a token")
            await asyncio.sleep(wait)

    async def cool_down(self, retry_after: int | None = None) -> float:
        """Record a 429: no tokens until the cooldown has passed.

        Args:
            retry_after: Retry-After header of the 429 response (seconds)

        Returns:
            The cooldown applied
        """
        async with self._lock:
            cooldown = float(retry_after) if retry_after is not None else self._next_cooldown
            cooldown = min(cooldown, self.config.max_cooldown_seconds)
            self._next_cooldown = min(
                self._next_cooldown * self.config.cooldown_multiplier,
                self.config.max_cooldown_seconds,
            )
            self._cooldown_until = max(self._cooldown_until, time.monotonic() + cooldown)
            self._tokens = 0.0

        logger.warning(
            f"RateLimiter[{self.name}]: Spotify answered 429, pausing requests for {cooldown:.1f}s"
        )
        return cooldown

    def reset_cooldown(self) -> None:
        """Back to the fallback cooldown after a request went through."""
        self._next_cooldown = self.config.fallback_cooldown_seconds

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object
    ) -> None:
        # A 429 is still a completed request, so the client resets the cooldown
        # itself once it has seen a 2xx.
        return None

    @property
    def available_tokens(self) -> float:
        """Current token count (for debugging)."""
        self._refill(time.monotonic())
        return self._tokens

    @property
    def cooling_down(self) -> bool:
        return time.monotonic() < self._cooldown_until


__all__ = ["RateLimiter", "RateLimiterConfig"]
