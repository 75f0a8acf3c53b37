from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from app.core.logging_config import USAGE_LOGGER_NAME
from services.draft_normalizer import Draft, normalize_drafts
from services.draft_policy import DEFAULT_POLICY, PolicyTable, RiskLevel
from services.errors import DraftGenerationError, EmptyResult, ErrorKind, ParsingError
from services.prompt_builder import build_prompt
from services.request_sanitizer import GenerationRequest, SanitizedRequest, validate_request
from services.resilient_invoker import CircuitBreaker, InvokerPolicy, ResilientInvoker, get_circuit_breaker
from services.response_parser import run_strategies
from services.text_generator import TextGenerator

logger = logging.getLogger(__name__)
usage_logger = logging.getLogger(USAGE_LOGGER_NAME)

RAW_RESPONSE_LOG_LIMIT = 500


@dataclass(frozen=True)
class UserInfo:
    name: str
    position: str
    region: str
    electoral_district: str
    greeting: str


@dataclass(frozen=True)
class GenerationMetadata:
    category: str
    sub_category: str
    response_time_ms: int
    risk_level: RiskLevel
    generated_at: datetime
    ai_model: str
    parse_strategy: str
    processing_steps: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class GenerationResult:
    request_id: str
    drafts: list[Draft]
    metadata: GenerationMetadata
    user_info: UserInfo


def _new_request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _user_info(request: SanitizedRequest) -> UserInfo:
    return UserInfo(
        name=request.user_profile.name or "",
        position=request.user_profile.position or "",
        region=request.region,
        electoral_district=request.user_profile.electoral_district or "",
        greeting=request.greeting,
    )


class DraftGeneratorService:
    """Turn a writing request into up to three validated blog drafts."""

    def __init__(
        self,
        generator: TextGenerator,
        breaker: CircuitBreaker | None = None,
        invoker_policy: InvokerPolicy | None = None,
        policy: PolicyTable = DEFAULT_POLICY,
        invoker: ResilientInvoker | None = None,
    ) -> None:
        self._generator = generator
        self._breaker = breaker or get_circuit_breaker()
        self._invoker = invoker or ResilientInvoker(generator, self._breaker, invoker_policy)
        self._policy = policy

    def _log_usage(
        self,
        request: GenerationRequest,
        category: str | None,
        response_time_ms: int,
        success: bool,
        error_type: ErrorKind | None = None,
    ) -> None:
        profile = request.user_profile
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user": {
                "name": getattr(profile, "name", None) or "UNKNOWN",
                "position": getattr(profile, "position", None) or "UNKNOWN",
                "region": " ".join(
                    filter(None, [getattr(profile, "region_metro", None), getattr(profile, "region_local", None)])
                ),
            },
            "request": {
                "category": category or "UNKNOWN",
                "success": success,
                "response_time_ms": response_time_ms,
                "error_type": error_type.value if error_type else None,
            },
            "system": {
                "environment": os.getenv("DRAFTPIPE_ENVIRONMENT", "development"),
                "ai_model": self._generator.model_name,
            },
        }
        usage_logger.info(json.dumps(payload, ensure_ascii=False))

    async def generate(self, request: GenerationRequest, written_on: date | None = None) -> GenerationResult:
        started_at = time.perf_counter()
        request_id = _new_request_id()
        steps: list[str] = []
        logger.info("[%s] Draft generation started", request_id)

        try:
            sanitized = validate_request(request, self._policy)
            steps.append("input_validation")
            if sanitized.risk_level is RiskLevel.high:
                logger.warning(
                    "[%s] High-risk request (%s); flagged for review",
                    request_id,
                    ", ".join(sanitized.risk_keywords),
                )

            prompt = build_prompt(sanitized, written_on or date.today())
            steps.append("prompt_generation")

            text = await self._invoker.invoke(prompt)
            steps.append("ai_generation")
            logger.info("[%s] Model response received (%s chars)", request_id, len(text))

            try:
                strategy, drafts = run_strategies(
                    text,
                    validate=lambda candidates: normalize_drafts(candidates, sanitized.category, self._policy),
                )
            except (ParsingError, EmptyResult):
                logger.error(
                    "[%s] Unparseable model response: %s",
                    request_id,
                    text[:RAW_RESPONSE_LOG_LIMIT],
                )
                raise
            steps.append("response_parsing")
            steps.append("content_validation")
        except DraftGenerationError as exc:
            elapsed_ms = int((time.perf_counter() - started_at) * 1000)
            self._log_usage(request, request.category, elapsed_ms, False, exc.kind)
            logger.error(
                "[%s] Draft generation failed after %sms (%s): %s",
                request_id,
                elapsed_ms,
                exc.kind.value,
                exc,
            )
            raise
        except Exception as exc:
            elapsed_ms = int((time.perf_counter() - started_at) * 1000)
            self._log_usage(request, request.category, elapsed_ms, False, ErrorKind.unknown)
            logger.exception("[%s] Unexpected draft generation failure", request_id)
            raise DraftGenerationError(str(exc)) from exc

        elapsed_ms = int((time.perf_counter() - started_at) * 1000)
        self._log_usage(request, sanitized.category, elapsed_ms, True)
        logger.info("[%s] Generated %s drafts in %sms", request_id, len(drafts), elapsed_ms)

        return GenerationResult(
            request_id=request_id,
            drafts=drafts,
            metadata=GenerationMetadata(
                category=sanitized.category,
                sub_category=sanitized.sub_category,
                response_time_ms=elapsed_ms,
                risk_level=sanitized.risk_level,
                generated_at=datetime.now(timezone.utc),
                ai_model=self._generator.model_name,
                parse_strategy=strategy,
                processing_steps=steps,
            ),
            user_info=_user_info(sanitized),
        )


def system_health(breaker: CircuitBreaker, api_key_configured: bool) -> dict[str, object]:
    snapshot = breaker.snapshot()
    last_failure = breaker.last_failure_time()
    return {
        "status": "DEGRADED" if snapshot.is_open else "HEALTHY",
        "circuit_breaker": {
            "state": snapshot.state.value,
            "is_open": snapshot.is_open,
            "failures": snapshot.consecutive_failures,
            "last_failure_at": last_failure.isoformat() if last_failure else None,
        },
        "api": {"key_configured": api_key_configured},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
