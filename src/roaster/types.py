from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

ExtractionMethod = Literal["basic", "ai", "auto"]
ExtractionStrategy = Literal["basic", "text", "vision"]
ProviderName = Literal["openai", "anthropic"]
ModelTier = Literal["nano", "mini", "sonnet", "opus"]
SubscriptionTier = Literal["free", "plus", "premium"]
CallStatus = Literal["completed", "failed", "timeout"]
ArtifactKind = Literal["roast", "cover_letter", "optimized_resume", "interview_prep"]

PAYLOAD_SCHEMA_VERSION = 1


class PersonalInfo(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    location: str = ""
    linkedin: str = ""
    website: str = ""


class ExperienceItem(BaseModel):
    company: str = ""
    position: str = ""
    location: str = ""
    start_date: str = ""
    end_date: str = ""
    achievements: list[str] = Field(default_factory=list)


class EducationItem(BaseModel):
    institution: str = ""
    degree: str = ""
    field: str = ""
    graduation_date: str = ""
    gpa: str = ""


class SkillSet(BaseModel):
    technical: list[str] = Field(default_factory=list)
    soft: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)


class ResumeData(BaseModel):
    kind: Literal["resume"] = "resume"
    schema_version: int = PAYLOAD_SCHEMA_VERSION
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    summary: str = ""
    experience: list[ExperienceItem] = Field(default_factory=list)
    education: list[EducationItem] = Field(default_factory=list)
    skills: SkillSet = Field(default_factory=SkillSet)
    projects: list[str] = Field(default_factory=list)
    raw_text: str = ""


class JobPostingData(BaseModel):
    kind: Literal["job_posting"] = "job_posting"
    schema_version: int = PAYLOAD_SCHEMA_VERSION
    title: str = ""
    company: str = ""
    location: str = ""
    responsibilities: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    nice_to_have: list[str] = Field(default_factory=list)
    compensation: str = ""
    keywords: list[str] = Field(default_factory=list)
    raw_text: str = ""


class SummaryData(BaseModel):
    kind: Literal["summary"] = "summary"
    schema_version: int = PAYLOAD_SCHEMA_VERSION
    source_kind: Literal["resume", "job_posting"] = "resume"
    headline: str = ""
    summary: str = ""
    key_points: list[str] = Field(default_factory=list)
    raw_text: str = ""


class KeywordMatch(BaseModel):
    matched: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)


class RoastData(BaseModel):
    kind: Literal["roast"] = "roast"
    schema_version: int = PAYLOAD_SCHEMA_VERSION
    overall_score: int = 0
    verdict: str = ""
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    keyword_match: KeywordMatch = Field(default_factory=KeywordMatch)
    raw_text: str = ""


class CoverLetterData(BaseModel):
    kind: Literal["cover_letter"] = "cover_letter"
    schema_version: int = PAYLOAD_SCHEMA_VERSION
    greeting: str = ""
    body: list[str] = Field(default_factory=list)
    closing: str = ""
    raw_text: str = ""


class OptimizedResumeData(ResumeData):
    kind: Literal["optimized_resume"] = "optimized_resume"  # type: ignore[assignment]


class InterviewQuestion(BaseModel):
    question: str = ""
    category: str = ""
    suggested_answer: str = ""
    tips: list[str] = Field(default_factory=list)


class InterviewPrepData(BaseModel):
    kind: Literal["interview_prep"] = "interview_prep"
    schema_version: int = PAYLOAD_SCHEMA_VERSION
    questions: list[InterviewQuestion] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list)
    raw_text: str = ""


ArtifactPayload = Annotated[
    Union[
        ResumeData,
        JobPostingData,
        SummaryData,
        RoastData,
        CoverLetterData,
        OptimizedResumeData,
        InterviewPrepData,
    ],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER: TypeAdapter[Any] = TypeAdapter(ArtifactPayload)


def load_payload(data: dict[str, Any]) -> BaseModel:
    return _PAYLOAD_ADAPTER.validate_python(data)


class ToolSchema(BaseModel):
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class ProviderRequest(BaseModel):
    prompt: str
    model: ModelTier
    images: list[str] = Field(default_factory=list)
    max_tokens: int = 4000
    temperature: float = 0.3
    system_prompt: str | None = None
    tool: ToolSchema | None = None
    expect_json: bool = True

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, value: float) -> float:
        if value < 0 or value > 1:
            raise ValueError("temperature must be between 0 and 1")
        return value

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, value: int) -> int:
        if value < 1 or value > 32000:
            raise ValueError("max_tokens must be between 1 and 32000")
        return value


class ProviderResult(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    raw_text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: Decimal = Decimal("0")
    latency_ms: int = 0
    finish_reason: str = ""
    parse_failed: bool = False


class TierDecision(BaseModel):
    strategy: ExtractionStrategy
    provider: ProviderName | None = None
    model: ModelTier | None = None


class QuotaStatus(BaseModel):
    allowed: bool
    remaining: int
    used: int
    limit: int
    tier: SubscriptionTier
    bonus_credits: int = 0


class ResumeExtractionCommand(BaseModel):
    file_bytes: bytes | None = None
    text: str | None = None
    filename: str = "resume.pdf"
    mime_type: str = "application/pdf"
    account_id: int | None = None
    method: ExtractionMethod = "auto"
    provider: str | None = None
    model: str | None = None
    bypass_cache: bool = False


class JobExtractionCommand(BaseModel):
    text: str
    account_id: int | None = None
    method: ExtractionMethod = "auto"
    provider: str | None = None
    model: str | None = None
    bypass_cache: bool = False


class GenerationCommand(BaseModel):
    resume_text: str
    job_description: str = ""
    account_id: int | None = None
    raw_document_id: int | None = None
    provider: str | None = None
    model: str | None = None
    bypass_cache: bool = False
    tone: str = "professional"
    difficulty: str = "medium"
    question_count: int = 10
    template_id: str | None = None
    analysis_id: str | None = None
    analysis: dict[str, Any] = Field(default_factory=dict)


class OperationResult(BaseModel):
    success: bool = True
    data: dict[str, Any] = Field(default_factory=dict)
    cached: bool = False
    artifact_id: int | None = None
    content_hash: str = ""
    extraction_method: ExtractionStrategy | None = None
    has_images: bool = False
    image_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)
    states: list[str] = Field(default_factory=list)
