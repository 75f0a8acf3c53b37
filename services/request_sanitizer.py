from __future__ import annotations

import re
from dataclasses import dataclass, field

from services.draft_policy import (
    CATEGORIES,
    DEFAULT_CATEGORY,
    DEFAULT_POLICY,
    SUB_CATEGORIES,
    PolicyTable,
    RiskLevel,
    find_risk_keywords,
    screen,
)
from services.errors import ValidationError

TOPIC_MIN_LENGTH = 5
TOPIC_MAX_LENGTH = 500
KEYWORDS_MAX_LENGTH = 200

_ANGLE_BRACKETS = re.compile(r"[<>]")
_QUOTES = re.compile(r"[\"'`]")
_LINE_DIRECTIVES = re.compile(r"(^|\n)\s*[#-]")
_BACKSLASHES = re.compile(r"\\")
_BRACES = re.compile(r"[{}]")


@dataclass(frozen=True)
class WriterProfile:
    name: str | None = None
    position: str | None = None
    region_metro: str | None = None
    region_local: str | None = None
    electoral_district: str | None = None


@dataclass(frozen=True)
class GenerationRequest:
    user_profile: WriterProfile | None
    prompt: str | None
    keywords: str | None = None
    category: str | None = None
    sub_category: str | None = None


@dataclass(frozen=True)
class SanitizedRequest:
    user_profile: WriterProfile
    prompt: str
    keywords: str
    category: str
    sub_category: str
    risk_level: RiskLevel
    risk_keywords: list[str] = field(default_factory=list)

    @property
    def region(self) -> str:
        return f"{self.user_profile.region_metro or ''} {self.user_profile.region_local or ''}".strip()

    @property
    def greeting(self) -> str:
        return f"{self.region} 주민 여러분 안녕하세요"


def sanitize_text(value: str | None) -> str:
    """Strip characters that could break JSON output or read as instructions."""
    if not value:
        return ""
    text = _ANGLE_BRACKETS.sub("", value)
    text = _QUOTES.sub("", text)
    text = _LINE_DIRECTIVES.sub(r"\1", text)
    text = _BACKSLASHES.sub("", text)
    text = _BRACES.sub("", text)
    return text.strip()


def _check_required(value: object, max_length: int) -> bool:
    return isinstance(value, str) and bool(value) and len(value) <= max_length


def _check_optional(value: object, max_length: int) -> bool:
    return value is None or (isinstance(value, str) and len(value) <= max_length)


def collect_errors(request: GenerationRequest) -> list[str]:
    errors: list[str] = []

    profile = request.user_profile
    if not isinstance(profile, WriterProfile):
        errors.append("유효하지 않은 사용자 프로필입니다.")
    else:
        if not _check_required(profile.name, 50):
            errors.append("이름은 필수이며 50자를 초과할 수 없습니다.")
        if not _check_required(profile.position, 100):
            errors.append("직책은 필수이며 100자를 초과할 수 없습니다.")
        if not _check_required(profile.region_metro, 50):
            errors.append("광역시/도는 필수이며 50자를 초과할 수 없습니다.")
        if not _check_optional(profile.region_local, 50):
            errors.append("기초자치단체는 50자를 초과할 수 없습니다.")
        if not _check_optional(profile.electoral_district, 50):
            errors.append("선거구는 50자를 초과할 수 없습니다.")

    if not request.prompt or not isinstance(request.prompt, str):
        errors.append("주제는 필수입니다.")
    elif not TOPIC_MIN_LENGTH <= len(request.prompt) <= TOPIC_MAX_LENGTH:
        errors.append(f"주제는 {TOPIC_MIN_LENGTH}자 이상 {TOPIC_MAX_LENGTH}자 이하여야 합니다.")

    if request.keywords and (
        not isinstance(request.keywords, str) or len(request.keywords) > KEYWORDS_MAX_LENGTH
    ):
        errors.append(f"키워드는 {KEYWORDS_MAX_LENGTH}자를 초과할 수 없습니다.")

    if request.category:
        if request.category not in CATEGORIES:
            errors.append(f"유효하지 않은 카테고리입니다. 허용된 카테고리: {', '.join(CATEGORIES)}")
        elif request.sub_category and request.sub_category not in SUB_CATEGORIES[request.category]:
            errors.append(f"'{request.category}' 카테고리에서 유효하지 않은 세부 카테고리입니다.")
    elif request.sub_category and request.sub_category not in SUB_CATEGORIES[DEFAULT_CATEGORY]:
        errors.append(f"'{DEFAULT_CATEGORY}' 카테고리에서 유효하지 않은 세부 카테고리입니다.")

    return errors


def validate_request(
    request: GenerationRequest,
    policy: PolicyTable = DEFAULT_POLICY,
) -> SanitizedRequest:
    """Validate ``request`` and return a sanitized copy annotated with its risk level.

    Every violated constraint is reported in a single ``ValidationError``.
    """
    errors = collect_errors(request)
    if errors:
        raise ValidationError(errors)

    risk_level = screen(request.prompt, request.keywords, policy)
    risk_keywords = find_risk_keywords(request.prompt, request.keywords, policy)
    profile = request.user_profile

    return SanitizedRequest(
        user_profile=WriterProfile(
            name=sanitize_text(profile.name),
            position=sanitize_text(profile.position),
            region_metro=sanitize_text(profile.region_metro),
            region_local=sanitize_text(profile.region_local),
            electoral_district=sanitize_text(profile.electoral_district),
        ),
        prompt=sanitize_text(request.prompt),
        keywords=sanitize_text(request.keywords),
        category=sanitize_text(request.category) or DEFAULT_CATEGORY,
        sub_category=sanitize_text(request.sub_category),
        risk_level=risk_level,
        risk_keywords=risk_keywords,
    )
