import logging
from dataclasses import replace

import pytest

from conftest import FakeTextGenerator
from services.draft_generator import DraftGeneratorService, system_health
from services.draft_policy import RiskLevel
from services.errors import (
    ErrorKind,
    ParsingError,
    ServiceUnavailable,
    UpstreamFatalError,
    ValidationError,
)
from services.prompt_builder import PROMPT_EXEMPLAR
from services.resilient_invoker import CircuitBreaker, InvokerPolicy
from services.text_generator import UpstreamError

ALL_STEPS = [
    "input_validation",
    "prompt_generation",
    "ai_generation",
    "response_parsing",
    "content_validation",
]


def make_service(generator, clock, **breaker_kwargs):
    return DraftGeneratorService(
        generator=generator,
        breaker=CircuitBreaker(clock=clock, **breaker_kwargs),
        invoker_policy=InvokerPolicy(initial_delay=0.0, max_jitter=0.0),
    )


@pytest.mark.asyncio
async def test_general_new_year_greeting_scenario(generation_request, written_on, clock):
    generator = FakeTextGenerator(PROMPT_EXEMPLAR)
    service = make_service(generator, clock)

    result = await service.generate(generation_request, written_on=written_on)

    assert len(result.drafts) == 3
    assert all(draft.content.startswith("<p>") and draft.content.endswith("</p>") for draft in result.drafts)
    assert all(draft.risk_level is RiskLevel.low for draft in result.drafts)
    assert result.metadata.risk_level is RiskLevel.low
    assert result.metadata.category == "일반"
    assert result.metadata.parse_strategy == "clean_json"
    assert result.metadata.processing_steps == ALL_STEPS
    assert result.metadata.ai_model == "fake-model"
    assert result.metadata.response_time_ms >= 0
    assert result.request_id.startswith("req_")
    assert result.user_info.region == "서울시 강남구"
    assert result.user_info.greeting == "서울시 강남구 주민 여러분 안녕하세요"


@pytest.mark.asyncio
async def test_prompt_sent_to_model_is_built_from_sanitized_request(generation_request, written_on, clock):
    generator = FakeTextGenerator(PROMPT_EXEMPLAR)
    service = make_service(generator, clock)

    await service.generate(replace(generation_request, prompt='신년 "인사말" {지시}'), written_on=written_on)

    assert len(generator.calls) == 1
    assert "주제: 신년 인사말 지시" in generator.calls[0]
    assert "작성일: 2025-01-01" in generator.calls[0]


@pytest.mark.asyncio
async def test_invalid_request_fails_before_network(generation_request, clock):
    generator = FakeTextGenerator(PROMPT_EXEMPLAR)
    service = make_service(generator, clock)

    with pytest.raises(ValidationError) as excinfo:
        await service.generate(replace(generation_request, prompt="짧음"))

    assert generator.calls == []
    assert excinfo.value.kind is ErrorKind.validation


@pytest.mark.asyncio
async def test_vote_topic_is_high_risk_but_completes(generation_request, clock):
    service = make_service(FakeTextGenerator(PROMPT_EXEMPLAR), clock)

    result = await service.generate(replace(generation_request, prompt="다음 달 투표소 위치 안내"))

    assert result.metadata.risk_level is RiskLevel.high
    assert len(result.drafts) == 3


@pytest.mark.asyncio
async def test_refusal_text_yields_single_fallback_draft(generation_request, clock):
    text = "Sorry, I cannot process this request"
    service = make_service(FakeTextGenerator(text), clock)

    result = await service.generate(generation_request)

    assert len(result.drafts) == 1
    assert result.drafts[0].content == f"<p>{text}</p>"
    assert result.metadata.parse_strategy == "fallback_extraction"


@pytest.mark.asyncio
async def test_unparseable_response_is_logged_not_returned(generation_request, clock, caplog):
    service = make_service(FakeTextGenerator("   "), clock)

    with caplog.at_level(logging.ERROR, logger="services.draft_generator"):
        with pytest.raises(ParsingError) as excinfo:
            await service.generate(generation_request)

    assert excinfo.value.user_message == "AI 응답 처리 중 오류가 발생했습니다. 다시 시도해주세요."
    assert "Unparseable model response" in caplog.text


@pytest.mark.asyncio
async def test_transient_failures_surface_service_unavailable(generation_request, clock):
    generator = FakeTextGenerator(UpstreamError("OpenAI rate limit reached.", transient=True, status_code=429))
    service = make_service(generator, clock)

    with pytest.raises(ServiceUnavailable) as excinfo:
        await service.generate(generation_request)

    assert len(generator.calls) == 3
    assert "rate limit" not in excinfo.value.user_message


@pytest.mark.asyncio
async def test_fatal_upstream_error_is_classified(generation_request, clock):
    generator = FakeTextGenerator(UpstreamError("OpenAI quota exhausted.", transient=False, status_code=429))
    service = make_service(generator, clock)

    with pytest.raises(UpstreamFatalError) as excinfo:
        await service.generate(generation_request)

    assert excinfo.value.kind is ErrorKind.upstream_fatal
    assert "quota exhausted" not in excinfo.value.user_message


@pytest.mark.asyncio
async def test_usage_stats_are_logged(generation_request, clock, caplog, monkeypatch):
    monkeypatch.setattr(logging.getLogger("draftpipe.usage"), "propagate", True)
    service = make_service(FakeTextGenerator(PROMPT_EXEMPLAR), clock)

    with caplog.at_level(logging.INFO, logger="draftpipe.usage"):
        await service.generate(generation_request)

    records = [record for record in caplog.records if record.name == "draftpipe.usage"]
    assert len(records) == 1
    assert '"success": true' in records[0].getMessage()
    assert '"category": "일반"' in records[0].getMessage()


@pytest.mark.asyncio
async def test_system_health_reports_open_breaker(clock):
    breaker = CircuitBreaker(failure_threshold=1, clock=clock)
    assert system_health(breaker, api_key_configured=True)["status"] == "HEALTHY"

    await breaker.record_failure()
    health = system_health(breaker, api_key_configured=False)

    assert health["status"] == "DEGRADED"
    assert health["circuit_breaker"]["failures"] == 1
    assert health["api"] == {"key_configured": False}


@pytest.mark.asyncio
async def test_json_with_unrelated_keys_is_salvaged_as_prose(generation_request, clock):
    text = (
        '[{"heading": "새해 인사", "body": "서울시 강남구 주민 여러분 안녕하세요. '
        '올 한 해도 건강과 행복이 가득하시길 바랍니다."}]'
    )
    service = make_service(FakeTextGenerator(text), clock)

    result = await service.generate(generation_request)

    assert len(result.drafts) == 1
    assert result.metadata.parse_strategy == "fallback_extraction"
    assert result.metadata.processing_steps == ALL_STEPS
