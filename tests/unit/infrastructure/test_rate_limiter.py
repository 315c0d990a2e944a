"""Tests for the shared rate limit cooldown gate.

Hey future me - FakeMonotonic.sleep() advances the fake clock instead of waiting, so the
recorded sleeps ARE the cooldowns the limiter applied.
"""

import httpx
import pytest
from helpers import FakeMonotonic

from soundtrack.domain.exceptions import RateLimitExceededError
from soundtrack.infrastructure.rate_limiter import RateLimiter, parse_retry_after


@pytest.fixture
def fake_time() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def limiter(fake_time: FakeMonotonic) -> RateLimiter:
    return RateLimiter(clock=fake_time.clock, sleep=fake_time.sleep)


def _responses(*statuses: int, retry_after: str | None = None):
    """Build a send() factory returning the given statuses in order."""
    headers = {"Retry-After": retry_after} if retry_after is not None else {}
    queue = [httpx.Response(status, headers=headers) for status in statuses]
    calls: list[int] = []

    async def send() -> httpx.Response:
        calls.append(1)
        return queue.pop(0)

    return send, calls


class TestParseRetryAfter:
    """Tests for parse_retry_after()."""

    def test_seconds(self) -> None:
        """Plain numbers are seconds."""
        assert parse_retry_after("2") == 2.0
        assert parse_retry_after(" 1.5 ") == 1.5

    def test_missing_or_garbage(self) -> None:
        """Missing or unparseable headers -> None."""
        assert parse_retry_after(None) is None
        assert parse_retry_after("soon") is None

    def test_negative_is_clamped(self) -> None:
        """Negative values never produce negative sleeps."""
        assert parse_retry_after("-3") == 0.0


class TestRateLimiterExecute:
    """Tests for RateLimiter.execute()."""

    async def test_success_passes_through(
        self, limiter: RateLimiter, fake_time: FakeMonotonic
    ) -> None:
        """Non-429 responses are returned without waiting."""
        send, calls = _responses(200)
        response = await limiter.execute(send)
        assert response.status_code == 200
        assert len(calls) == 1
        assert fake_time.sleeps == []
        assert limiter.request_count == 1

    async def test_error_status_is_not_retried(self, limiter: RateLimiter) -> None:
        """Only 429 is retried - classifying other errors is the caller's job."""
        send, calls = _responses(500)
        response = await limiter.execute(send)
        assert response.status_code == 500
        assert len(calls) == 1

    async def test_retry_after_is_honoured_with_margin(
        self, limiter: RateLimiter, fake_time: FakeMonotonic
    ) -> None:
        """429 with Retry-After: 2 -> wait 2.5s, then the retry succeeds."""
        send, calls = _responses(429, 200, retry_after="2")
        start = fake_time.now

        response = await limiter.execute(send)

        assert response.status_code == 200
        assert len(calls) == 2
        assert fake_time.sleeps == [2.5]
        assert fake_time.now - start >= 2.5

    async def test_gives_up_after_max_attempts(
        self, limiter: RateLimiter, fake_time: FakeMonotonic
    ) -> None:
        """Five 429s in a row -> RateLimitExceededError, exactly five requests."""
        send, calls = _responses(429, 429, 429, 429, 429)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.execute(send)

        assert len(calls) == 5
        assert exc_info.value.attempts == 5
        assert exc_info.value.retry_after is None
        # No Retry-After -> default 1s + 0.5s margin between attempts
        assert fake_time.sleeps == [1.5, 1.5, 1.5, 1.5]


class TestCooldownGate:
    """Tests for the process-wide cooldown."""

    async def test_other_callers_wait_for_active_cooldown(
        self, limiter: RateLimiter, fake_time: FakeMonotonic
    ) -> None:
        """A 429 seen by one caller delays the next request of everybody."""
        await limiter.register_rate_limit(3.0)
        assert limiter.cooldown_remaining == 3.5

        send, calls = _responses(200)
        await limiter.execute(send)

        assert fake_time.sleeps == [3.5]
        assert len(calls) == 1
        assert limiter.cooldown_remaining == 0.0

    async def test_deadline_only_moves_forward(
        self, limiter: RateLimiter
    ) -> None:
        """A shorter Retry-After never shortens an active cooldown."""
        await limiter.register_rate_limit(10.0)
        await limiter.register_rate_limit(1.0)
        assert limiter.cooldown_remaining == 10.5

    async def test_wait_returns_zero_when_open(self, limiter: RateLimiter) -> None:
        """Open gate -> no wait."""
        assert await limiter.wait_for_cooldown() == 0.0
