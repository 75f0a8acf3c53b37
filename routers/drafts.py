from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from app.core.config import Settings, get_settings
from schemas.draft_generation import (
    DraftResponse,
    ErrorResponse,
    GenerationMetadataResponse,
    GenerationRequestInput,
    GenerationResponse,
    UserInfoResponse,
)
from services.draft_generator import DraftGeneratorService, system_health
from services.errors import DraftGenerationError, ErrorKind, ServiceUnavailable, ValidationError
from services.request_sanitizer import GenerationRequest, WriterProfile
from services.resilient_invoker import CircuitBreaker, InvokerPolicy, get_circuit_breaker
from services.text_generator import OpenAITextGenerator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["drafts"])

_STATUS_BY_KIND = {
    ErrorKind.validation: 400,
    ErrorKind.service_unavailable: 503,
    ErrorKind.parsing: 502,
    ErrorKind.empty_result: 502,
    ErrorKind.upstream_fatal: 502,
    ErrorKind.unknown: 500,
}


def _breaker(settings: Settings) -> CircuitBreaker:
    return get_circuit_breaker(
        failure_threshold=settings.breaker_failure_threshold,
        reset_timeout=settings.breaker_reset_timeout,
    )


def get_draft_generator(settings: Settings = Depends(get_settings)) -> DraftGeneratorService:
    if not settings.openai_api_key:
        raise HTTPException(status_code=500, detail="OpenAI API key is not configured.")

    generator = OpenAITextGenerator(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        temperature=settings.openai_temperature,
        max_output_tokens=settings.openai_max_output_tokens,
    )
    return DraftGeneratorService(
        generator=generator,
        breaker=_breaker(settings),
        invoker_policy=InvokerPolicy(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            max_jitter=settings.retry_max_jitter,
            attempt_timeout=settings.attempt_timeout,
        ),
    )


async def enforce_request_size(request: Request, settings: Settings = Depends(get_settings)) -> None:
    body = await request.body()
    if len(body) > settings.max_request_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Request body exceeds {settings.max_request_bytes} bytes.",
        )


def _error_response(exc: DraftGenerationError) -> JSONResponse:
    payload = ErrorResponse(error=exc.user_message, type=exc.kind.value)
    headers: dict[str, str] = {}
    if isinstance(exc, ValidationError):
        payload.details = exc.errors
    if isinstance(exc, ServiceUnavailable):
        payload.retry_after = int(exc.retry_after)
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse(
        status_code=_STATUS_BY_KIND[exc.kind],
        content=payload.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


@router.post(
    "/generate-drafts",
    response_model=GenerationResponse,
    dependencies=[Depends(enforce_request_size)],
)
async def generate_drafts(
    payload: GenerationRequestInput,
    service: DraftGeneratorService = Depends(get_draft_generator),
) -> GenerationResponse | JSONResponse:
    profile = payload.user_profile
    request = GenerationRequest(
        user_profile=WriterProfile(**profile.model_dump()) if profile else None,
        prompt=payload.prompt,
        keywords=payload.keywords,
        category=payload.category,
        sub_category=payload.sub_category,
    )

    try:
        result = await service.generate(request)
    except DraftGenerationError as exc:
        return _error_response(exc)

    return GenerationResponse(
        request_id=result.request_id,
        drafts=[
            DraftResponse(
                title=draft.title,
                content=draft.content,
                risk_level=draft.risk_level,
                word_count=draft.word_count,
                category=draft.category,
            )
            for draft in result.drafts
        ],
        metadata=GenerationMetadataResponse(
            category=result.metadata.category,
            sub_category=result.metadata.sub_category,
            response_time=result.metadata.response_time_ms,
            risk_level=result.metadata.risk_level,
            generated_at=result.metadata.generated_at,
            ai_model=result.metadata.ai_model,
            parse_strategy=result.metadata.parse_strategy,
            processing_steps=result.metadata.processing_steps,
        ),
        user_info=UserInfoResponse(
            name=result.user_info.name,
            position=result.user_info.position,
            region=result.user_info.region,
            electoral_district=result.user_info.electoral_district,
            greeting=result.user_info.greeting,
        ),
    )


@router.get("/health")
async def health(settings: Settings = Depends(get_settings)) -> dict[str, object]:
    return system_health(_breaker(settings), api_key_configured=bool(settings.openai_api_key))
