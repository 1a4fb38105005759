from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from roaster.types import OperationResult


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobExtractionRequest(CamelModel):
    text: str
    user_id: int | None = None
    extraction_method: Literal["basic", "ai", "auto"] = "auto"
    provider: str | None = None
    model: str | None = None
    bypass_cache: bool = False


class SummaryRequest(CamelModel):
    source_id: int
    user_id: int | None = None
    provider: str | None = None
    model: str | None = None
    bypass_cache: bool = False


class GenerationRequest(CamelModel):
    resume_text: str
    job_description: str = ""
    user_id: int | None = None
    raw_document_id: int | None = None
    provider: str | None = None
    model: str | None = None
    bypass_cache: bool = False


class RoastRequest(GenerationRequest):
    pass


class CoverLetterRequest(GenerationRequest):
    tone: str = "professional"


class OptimizedResumeRequest(GenerationRequest):
    template_id: str | None = None
    analysis_id: str | None = None
    analysis: dict[str, Any] = Field(default_factory=dict)


class InterviewPrepRequest(GenerationRequest):
    difficulty: str = "medium"
    question_count: int = 10


class OperationResponse(CamelModel):
    success: bool = True
    data: dict[str, Any] = Field(default_factory=dict)
    cached: bool = False
    artifact_id: int | None = None
    content_hash: str = ""
    extraction_method: str | None = None
    has_images: bool = False
    image_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, result: OperationResult) -> OperationResponse:
        return cls(
            success=result.success,
            data=result.data,
            cached=result.cached,
            artifact_id=result.artifact_id,
            content_hash=result.content_hash,
            extraction_method=result.extraction_method,
            has_images=result.has_images,
            image_count=result.image_count,
            metadata={to_camel(key): value for key, value in result.metadata.items()},
        )


class ArtifactResponse(CamelModel):
    id: int
    kind: str
    content_hash: str
    provider: str = ""
    model: str = ""
    revision: int | None = None
    schema_version: int = 1
    created_at: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class AccountCreateRequest(CamelModel):
    email: str
    name: str = ""
    tier: Literal["free", "plus", "premium"] = "free"
    bonus_credits: int = Field(default=0, ge=0)


class AccountResponse(CamelModel):
    id: int
    email: str
    name: str
    tier: str
    monthly_usage: int
    lifetime_usage: int
    bonus_credits: int
    last_reset: datetime


class QuotaResponse(CamelModel):
    allowed: bool
    can_roast: bool
    remaining: int
    used: int
    limit: int
    tier: str
    bonus_credits: int


class UsageCallResponse(CamelModel):
    provider: str
    model: str
    operation: str
    status: str
    total_tokens: int
    total_cost_usd: str
    created_at: str | None = None


class UsageResponse(CamelModel):
    calls: list[UsageCallResponse]
    total_cost_usd: str
    total_tokens: int
    call_count: int
