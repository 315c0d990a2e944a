"""
Shared cooldown gate for outbound streaming provider calls.

Hey future me - this is the ONE piece of cross-user shared mutable state in the whole
sync engine! The provider rate-limits the whole application (all users share our client
credentials), so a 429 for user A means user B must wait too.

ALGORITHM: Cooldown gate
- One "cooldown until" instant for the whole process
- Before every request: if now < cooldown_until, sleep until that instant
- On 429: cooldown_until = now + Retry-After + margin (0.5s), retry the same request
- After max_attempts (5) requests that all got 429: RateLimitExceededError

USAGE:
    limiter = RateLimiter()  # inject ONE instance into every client
    response = await limiter.execute(lambda: client.get(url))

Time is injectable (clock/sleep) so tests don't actually wait.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from soundtrack.domain.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS = 429


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delay in seconds).

    Returns:
        Seconds to wait, or None if the header is missing or unparseable
    """
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return max(seconds, 0.0)


@dataclass
class RateLimiter:
    """Process-wide cooldown gate with bounded 429 retries.

    Attributes:
        max_attempts: Total attempts per request (first try included)
        margin_seconds: Added on top of Retry-After
        default_retry_after: Used when a 429 comes without Retry-After
        clock: Monotonic clock in seconds
        sleep: Async sleep function
        request_count: Requests sent through this gate (for health logs)
    """

    max_attempts: int = 5
    margin_seconds: float = 0.5
    default_retry_after: float = 1.0
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    # Internal state (not in __init__ signature)
    request_count: int = field(default=0, init=False)
    _cooldown_until: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @property
    def cooldown_remaining(self) -> float:
        """Seconds until the gate opens again (0 if open)."""
        return max(self._cooldown_until - self.clock(), 0.0)

    async def wait_for_cooldown(self) -> float:
        """Block until the cooldown gate is open.

        Hey future me - we do NOT hold the lock while sleeping! Otherwise one waiting
        caller would block everybody from even reading the deadline. Instead we re-check
        after waking up, because another 429 may have pushed the deadline further out.

        Returns:
            Total seconds waited
        """
        waited = 0.0
        while True:
            async with self._lock:
                remaining = self._cooldown_until - self.clock()
            if remaining <= 0:
                return waited
            logger.info(
                "rate_limit.cooldown",
                extra={"wait_seconds": round(remaining, 3)},
            )
            await self.sleep(remaining)
            waited += remaining

    async def register_rate_limit(self, retry_after: float | None) -> float:
        """Push the cooldown deadline after a 429.

        The deadline only ever moves forward - a short Retry-After from a concurrent
        request never shortens a longer cooldown that is already active.

        Args:
            retry_after: Retry-After header value in seconds (None = not provided)

        Returns:
            The cooldown length that was applied
        """
        delay = (
            retry_after if retry_after is not None else self.default_retry_after
        ) + self.margin_seconds
        async with self._lock:
            self._cooldown_until = max(self._cooldown_until, self.clock() + delay)
        return delay

    async def execute(
        self, send: Callable[[], Awaitable[httpx.Response]]
    ) -> httpx.Response:
        """Send a request through the gate, retrying on 429.

        Args:
            send: Zero-arg coroutine factory that issues the HTTP request.
                Called once per attempt, so it must build a fresh request each time.

        Returns:
            First non-429 response (may still be an error status - classifying
            it is the caller's job)

        Raises:
            RateLimitExceededError: If all max_attempts got 429
        """
        retry_after: float | None = None
        for attempt in range(1, self.max_attempts + 1):
            await self.wait_for_cooldown()
            async with self._lock:
                self.request_count += 1

            response = await send()
            if response.status_code != HTTP_TOO_MANY_REQUESTS:
                return response

            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            delay = await self.register_rate_limit(retry_after)
            logger.warning(
                "rate_limit.hit",
                extra={
                    "attempt": attempt,
                    "max_attempts": self.max_attempts,
                    "retry_after": retry_after,
                    "cooldown_seconds": round(delay, 3),
                },
            )

        logger.error(
            "rate_limit.exhausted",
            extra={"attempts": self.max_attempts, "retry_after": retry_after},
        )
        raise RateLimitExceededError(self.max_attempts, retry_after)


__all__ = ["RateLimiter", "parse_retry_after"]
