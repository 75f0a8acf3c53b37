import asyncio

import pytest

from conftest import FakeTextGenerator
from services.errors import ServiceUnavailable, UpstreamFatalError
from services.resilient_invoker import (
    BreakerState,
    CircuitBreaker,
    InvokerPolicy,
    ResilientInvoker,
    get_circuit_breaker,
)
from services.text_generator import UpstreamError


def transient() -> UpstreamError:
    return UpstreamError("OpenAI rate limit reached.", transient=True, status_code=429)


def make_invoker(generator, breaker, sleeps=None, **policy):
    async def fake_sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    return ResilientInvoker(
        generator,
        breaker,
        InvokerPolicy(**policy),
        sleep=fake_sleep,
        jitter=lambda low, high: 0.5,
    )


@pytest.mark.asyncio
async def test_success_resets_failures(clock):
    breaker = CircuitBreaker(clock=clock)
    generator = FakeTextGenerator(transient(), "[]")
    invoker = make_invoker(generator, breaker)

    assert await invoker.invoke("prompt") == "[]"
    assert len(generator.calls) == 2
    assert breaker.snapshot().consecutive_failures == 0
    assert breaker.snapshot().state is BreakerState.closed


@pytest.mark.asyncio
async def test_backoff_doubles_with_jitter(clock):
    sleeps: list[float] = []
    generator = FakeTextGenerator(transient())
    invoker = make_invoker(generator, CircuitBreaker(clock=clock), sleeps)

    with pytest.raises(ServiceUnavailable):
        await invoker.invoke("prompt")

    assert len(generator.calls) == 3
    assert sleeps == [1.0, 2.5]


@pytest.mark.asyncio
async def test_message_based_transient_errors_are_retried(clock):
    generator = FakeTextGenerator(RuntimeError("503 Service temporarily unavailable"), "ok")
    invoker = make_invoker(generator, CircuitBreaker(clock=clock))

    assert await invoker.invoke("prompt") == "ok"
    assert len(generator.calls) == 2


@pytest.mark.asyncio
async def test_fatal_error_is_not_retried(clock):
    breaker = CircuitBreaker(clock=clock)
    generator = FakeTextGenerator(UpstreamError("invalid api key", transient=False, status_code=401))
    invoker = make_invoker(generator, breaker)

    with pytest.raises(UpstreamFatalError):
        await invoker.invoke("prompt")

    assert len(generator.calls) == 1
    assert breaker.snapshot().consecutive_failures == 1


@pytest.mark.asyncio
async def test_attempt_timeout_is_transient(clock):
    class SlowGenerator:
        model_name = "slow"

        def __init__(self) -> None:
            self.calls = 0

        async def generate(self, prompt: str) -> str:
            self.calls += 1
            await asyncio.sleep(1)
            return "late"

    generator = SlowGenerator()
    invoker = make_invoker(generator, CircuitBreaker(clock=clock), attempt_timeout=0.01)

    with pytest.raises(ServiceUnavailable):
        await invoker.invoke("prompt")

    assert generator.calls == 3


@pytest.mark.asyncio
async def test_breaker_opens_after_five_failures_and_skips_network(clock):
    breaker = CircuitBreaker(clock=clock)
    generator = FakeTextGenerator(transient())
    invoker = make_invoker(generator, breaker)

    with pytest.raises(ServiceUnavailable):
        await invoker.invoke("prompt")
    with pytest.raises(ServiceUnavailable):
        await invoker.invoke("prompt")

    assert len(generator.calls) == 5
    assert breaker.snapshot().state is BreakerState.open

    with pytest.raises(ServiceUnavailable) as excinfo:
        await invoker.invoke("prompt")

    assert len(generator.calls) == 5
    assert excinfo.value.retry_after == pytest.approx(60.0)


@pytest.mark.asyncio
async def test_breaker_admits_one_probe_after_cool_down(clock):
    breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60.0, clock=clock)
    await breaker.record_failure()
    assert breaker.snapshot().state is BreakerState.open

    clock.advance(59)
    with pytest.raises(ServiceUnavailable):
        await breaker.before_call()

    clock.advance(2)
    release = asyncio.Event()
    probe_generator = FakeTextGenerator("probe ok", hang=release)
    probe = asyncio.create_task(make_invoker(probe_generator, breaker).invoke("prompt"))
    await asyncio.sleep(0)

    other_generator = FakeTextGenerator("should not run")
    with pytest.raises(ServiceUnavailable):
        await make_invoker(other_generator, breaker).invoke("prompt")
    assert other_generator.calls == []

    release.set()
    assert await probe == "probe ok"
    assert breaker.snapshot().state is BreakerState.closed
    assert len(probe_generator.calls) == 1


@pytest.mark.asyncio
async def test_failed_probe_reopens_breaker(clock):
    breaker = CircuitBreaker(failure_threshold=1, clock=clock)
    await breaker.record_failure()
    clock.advance(61)

    generator = FakeTextGenerator(transient())
    with pytest.raises(ServiceUnavailable):
        await make_invoker(generator, breaker).invoke("prompt")

    assert len(generator.calls) == 1
    assert breaker.snapshot().state is BreakerState.open


@pytest.mark.asyncio
async def test_cancellation_does_not_count_as_failure(clock):
    breaker = CircuitBreaker(clock=clock)
    generator = FakeTextGenerator("never", hang=asyncio.Event())
    task = asyncio.create_task(make_invoker(generator, breaker).invoke("prompt"))
    await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert breaker.snapshot().consecutive_failures == 0
    assert breaker.snapshot().state is BreakerState.closed


@pytest.mark.asyncio
async def test_concurrent_failures_are_all_counted(clock):
    breaker = CircuitBreaker(failure_threshold=100, clock=clock)

    await asyncio.gather(*(breaker.record_failure() for _ in range(20)))

    assert breaker.snapshot().consecutive_failures == 20


def test_process_breaker_is_shared():
    assert get_circuit_breaker() is get_circuit_breaker()


@pytest.mark.asyncio
async def test_cancelling_non_probe_call_keeps_probe_exclusive(clock):
    breaker = CircuitBreaker(clock=clock)
    stale_generator = FakeTextGenerator("late", hang=asyncio.Event())
    stale = asyncio.create_task(make_invoker(stale_generator, breaker).invoke("prompt"))
    await asyncio.sleep(0)

    for _ in range(5):
        await breaker.record_failure()
    clock.advance(61)

    probe_release = asyncio.Event()
    probe_generator = FakeTextGenerator("probe ok", hang=probe_release)
    probe = asyncio.create_task(make_invoker(probe_generator, breaker).invoke("prompt"))
    await asyncio.sleep(0)
    assert breaker.snapshot().state is BreakerState.half_open

    stale.cancel()
    with pytest.raises(asyncio.CancelledError):
        await stale
    assert breaker.snapshot().state is BreakerState.half_open

    other_generator = FakeTextGenerator("should not run")
    with pytest.raises(ServiceUnavailable):
        await make_invoker(other_generator, breaker).invoke("prompt")
    assert other_generator.calls == []

    probe_release.set()
    assert await probe == "probe ok"
    assert breaker.snapshot().state is BreakerState.closed


@pytest.mark.asyncio
async def test_cancelled_probe_allows_exactly_one_new_probe(clock):
    breaker = CircuitBreaker(failure_threshold=1, clock=clock)
    await breaker.record_failure()
    clock.advance(61)

    abandoned = asyncio.create_task(
        make_invoker(FakeTextGenerator("never", hang=asyncio.Event()), breaker).invoke("prompt")
    )
    await asyncio.sleep(0)
    abandoned.cancel()
    with pytest.raises(asyncio.CancelledError):
        await abandoned
    assert breaker.snapshot().state is BreakerState.open

    release = asyncio.Event()
    next_generator = FakeTextGenerator("probe ok", hang=release)
    next_probe = asyncio.create_task(make_invoker(next_generator, breaker).invoke("prompt"))
    await asyncio.sleep(0)

    rejected_generator = FakeTextGenerator("should not run")
    with pytest.raises(ServiceUnavailable):
        await make_invoker(rejected_generator, breaker).invoke("prompt")
    assert rejected_generator.calls == []

    release.set()
    assert await next_probe == "probe ok"
    assert len(next_generator.calls) == 1
    assert breaker.snapshot().state is BreakerState.closed


@pytest.mark.asyncio
async def test_cancellation_during_backoff_leaves_breaker_untouched(clock):
    breaker = CircuitBreaker(clock=clock)
    generator = FakeTextGenerator(transient())
    sleeping = asyncio.Event()

    async def hanging_sleep(delay: float) -> None:
        sleeping.set()
        await asyncio.Event().wait()

    invoker = ResilientInvoker(generator, breaker, InvokerPolicy(), sleep=hanging_sleep)
    task = asyncio.create_task(invoker.invoke("prompt"))
    await sleeping.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(generator.calls) == 1
    assert breaker.snapshot().consecutive_failures == 1
    assert breaker.snapshot().state is BreakerState.closed
