from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from services.draft_policy import RiskLevel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WriterProfileInput(CamelModel):
    name: str | None = None
    position: str | None = None
    region_metro: str | None = None
    region_local: str | None = None
    electoral_district: str | None = None


class GenerationRequestInput(CamelModel):
    user_profile: WriterProfileInput | None = None
    prompt: str | None = None
    keywords: str | None = None
    category: str | None = None
    sub_category: str | None = None


class DraftResponse(CamelModel):
    title: str
    content: str
    risk_level: RiskLevel
    word_count: int
    category: str


class GenerationMetadataResponse(CamelModel):
    category: str
    sub_category: str
    response_time: int
    risk_level: RiskLevel
    generated_at: datetime
    ai_model: str
    parse_strategy: str
    processing_steps: list[str]


class UserInfoResponse(CamelModel):
    name: str
    position: str
    region: str
    electoral_district: str
    greeting: str


class GenerationResponse(CamelModel):
    success: bool = True
    request_id: str
    drafts: list[DraftResponse]
    metadata: GenerationMetadataResponse
    user_info: UserInfoResponse


class ErrorResponse(CamelModel):
    error: str
    type: str
    retry_after: int | None = None
    details: list[str] | None = None
