from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from services.errors import ServiceUnavailable, UpstreamFatalError
from services.text_generator import TextGenerator, UpstreamError, is_transient

logger = logging.getLogger(__name__)

CIRCUIT_BREAKER_THRESHOLD = 5
CIRCUIT_BREAKER_RESET_SECONDS = 60.0


class BreakerState(str, Enum):
    closed = "CLOSED"
    open = "OPEN"
    half_open = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    state: BreakerState
    consecutive_failures: int
    last_failure_at: float | None

    @property
    def is_open(self) -> bool:
        return self.state is not BreakerState.closed


class CircuitBreaker:
    """Process-wide guard that short-circuits calls after repeated failures.

    All state changes go through the async methods below and happen under a
    single lock, so concurrent requests cannot lose failure counts. Once the
    cool-down has elapsed exactly one caller is let through as a probe; its
    outcome closes or re-opens the breaker.
    """

    def __init__(
        self,
        failure_threshold: int = CIRCUIT_BREAKER_THRESHOLD,
        reset_timeout: float = CIRCUIT_BREAKER_RESET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = BreakerState.closed
        self._failures = 0
        self._last_failure_at: float | None = None

    def _unavailable(self, retry_after: float) -> ServiceUnavailable:
        return ServiceUnavailable(
            f"Circuit breaker {self._state.value}; upstream call skipped.",
            retry_after=max(retry_after, 1.0),
        )

    async def before_call(self) -> bool:
        """Admit or reject a call; return True when the caller is the probe."""
        async with self._lock:
            if self._state is BreakerState.closed:
                return False
            if self._state is BreakerState.half_open:
                raise self._unavailable(self.reset_timeout)
            elapsed = self._clock() - (self._last_failure_at or 0.0)
            if elapsed < self.reset_timeout:
                raise self._unavailable(self.reset_timeout - elapsed)
            logger.info("Circuit breaker cool-down elapsed; allowing probe call")
            self._state = BreakerState.half_open
            self._failures = 0
            return True

    async def record_success(self) -> None:
        async with self._lock:
            if self._state is not BreakerState.closed:
                logger.info("Circuit breaker closed after successful call")
            self._failures = 0
            self._state = BreakerState.closed

    async def record_failure(self) -> bool:
        """Count a failed attempt and return True when the breaker is open."""
        async with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            if self._state is BreakerState.half_open:
                logger.error("Circuit breaker probe failed; re-opening")
                self._state = BreakerState.open
            elif self._state is BreakerState.closed and self._failures >= self.failure_threshold:
                logger.error(
                    "Circuit breaker opened after %s consecutive failures",
                    self._failures,
                )
                self._state = BreakerState.open
            return self._state is BreakerState.open

    async def release_probe(self) -> None:
        """Hand the probe slot back when a probe call is abandoned."""
        async with self._lock:
            if self._state is BreakerState.half_open:
                self._state = BreakerState.open

    def snapshot(self) -> CircuitBreakerSnapshot:
        return CircuitBreakerSnapshot(
            state=self._state,
            consecutive_failures=self._failures,
            last_failure_at=self._last_failure_at,
        )

    def last_failure_time(self) -> datetime | None:
        """Wall-clock time of the last failure, for health reporting."""
        if self._last_failure_at is None:
            return None
        ago = self._clock() - self._last_failure_at
        return datetime.now(timezone.utc) - timedelta(seconds=ago)


_breaker: CircuitBreaker | None = None


def get_circuit_breaker(
    failure_threshold: int = CIRCUIT_BREAKER_THRESHOLD,
    reset_timeout: float = CIRCUIT_BREAKER_RESET_SECONDS,
) -> CircuitBreaker:
    global _breaker
    if _breaker is None:
        _breaker = CircuitBreaker(failure_threshold=failure_threshold, reset_timeout=reset_timeout)
    return _breaker


@dataclass(frozen=True)
class InvokerPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_jitter: float = 1.0
    attempt_timeout: float = 60.0


class ResilientInvoker:
    """Call a text generator with bounded attempts, backoff and a circuit breaker."""

    def __init__(
        self,
        generator: TextGenerator,
        breaker: CircuitBreaker,
        policy: InvokerPolicy | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self._generator = generator
        self._breaker = breaker
        self._policy = policy or InvokerPolicy()
        self._sleep = sleep
        self._jitter = jitter

    async def _attempt(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(
                self._generator.generate(prompt),
                timeout=self._policy.attempt_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamError(
                f"Model call timeout after {self._policy.attempt_timeout}s.",
                transient=True,
            ) from exc

    async def invoke(self, prompt: str) -> str:
        is_probe = await self._breaker.before_call()
        try:
            return await self._invoke_with_retries(prompt)
        except asyncio.CancelledError:
            if is_probe:
                await self._breaker.release_probe()
            raise

    async def _invoke_with_retries(self, prompt: str) -> str:
        delay = self._policy.initial_delay
        last_error: Exception | None = None

        for attempt in range(1, self._policy.max_attempts + 1):
            try:
                result = await self._attempt(prompt)
            except asyncio.CancelledError:
                logger.info("Model call cancelled on attempt %s", attempt)
                raise
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if await self._breaker.record_failure():
                    raise ServiceUnavailable(
                        f"Circuit breaker opened: {exc}",
                        retry_after=self._breaker.reset_timeout,
                    ) from exc

                if not is_transient(exc):
                    logger.error("Non-retryable model error: %s", exc)
                    raise UpstreamFatalError(str(exc)) from exc

                if attempt < self._policy.max_attempts:
                    logger.warning(
                        "Retryable model error (%s/%s): %s",
                        attempt,
                        self._policy.max_attempts,
                        exc,
                    )
                    await self._sleep(delay)
                    delay = delay * 2 + self._jitter(0.0, self._policy.max_jitter)
                continue

            await self._breaker.record_success()
            return result

        logger.error("All %s model attempts failed: %s", self._policy.max_attempts, last_error)
        raise ServiceUnavailable(f"Retries exhausted: {last_error}") from last_error
