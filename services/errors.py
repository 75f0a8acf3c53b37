from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    validation = "VALIDATION_ERROR"
    service_unavailable = "SERVICE_UNAVAILABLE"
    parsing = "PARSING_ERROR"
    empty_result = "EMPTY_RESULT"
    upstream_fatal = "UPSTREAM_FATAL"
    unknown = "UNKNOWN"


PARSING_FAILED_MESSAGE = "AI 응답 처리 중 오류가 발생했습니다. 다시 시도해주세요."


class DraftGenerationError(RuntimeError):
    """Base class for every failure the draft pipeline reports to callers.

    ``str(exc)`` carries internal detail for logs; ``user_message`` is the
    only text that may be shown to the caller.
    """

    kind = ErrorKind.unknown
    default_user_message = "원고 생성 중 예기치 못한 오류가 발생했습니다."

    def __init__(self, detail: str | None = None, *, user_message: str | None = None) -> None:
        super().__init__(detail or self.default_user_message)
        self.user_message = user_message or self.default_user_message


class ValidationError(DraftGenerationError):
    """Raised when request fields are missing or out of range."""

    kind = ErrorKind.validation

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        message = f"입력 검증 실패: {' '.join(self.errors)}"
        super().__init__(message, user_message=message)


class ServiceUnavailable(DraftGenerationError):
    """Raised when the breaker is open or transient retries are exhausted."""

    kind = ErrorKind.service_unavailable
    default_user_message = "AI 서비스가 일시적으로 불안정합니다. 잠시 후 다시 시도해주세요."

    def __init__(self, detail: str | None = None, *, retry_after: float = 60.0) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class ParsingError(DraftGenerationError):
    """Raised when no parser strategy recovers any draft candidate."""

    kind = ErrorKind.parsing
    default_user_message = PARSING_FAILED_MESSAGE


class EmptyResult(DraftGenerationError):
    """Raised when parsing succeeded but no candidate survived validation."""

    kind = ErrorKind.empty_result
    default_user_message = PARSING_FAILED_MESSAGE


class UpstreamFatalError(DraftGenerationError):
    """Raised for non-retryable upstream failures such as bad credentials."""

    kind = ErrorKind.upstream_fatal
    default_user_message = "AI 서비스 설정 또는 사용량 한도에 문제가 있습니다. 관리자에게 문의해주세요."
