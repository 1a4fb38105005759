from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from roaster.api.deps import get_db, get_orchestrator, get_services, resolve_account
from roaster.api.schemas import (
    AccountCreateRequest,
    AccountResponse,
    ArtifactResponse,
    CoverLetterRequest,
    GenerationRequest,
    InterviewPrepRequest,
    JobExtractionRequest,
    OperationResponse,
    OptimizedResumeRequest,
    QuotaResponse,
    RoastRequest,
    SummaryRequest,
    UsageResponse,
)
from roaster.core.ledger import UsageLedger
from roaster.core.orchestrator import CacheOrchestrator, stored_payload
from roaster.core.runtime import RoasterServices
from roaster.db.repositories import AccountRepository, ProviderCallRepository, Stores
from roaster.errors import NotFoundError, ValidationError
from roaster.types import GenerationCommand, JobExtractionCommand, ResumeExtractionCommand

router = APIRouter(prefix="/api", tags=["api"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _respond(result: Any, background_tasks: BackgroundTasks, services: RoasterServices) -> OperationResponse:
    background_tasks.add_task(services.telemetry.flush)
    return OperationResponse.from_result(result)


def _artifact(kind: str, row: Any) -> ArtifactResponse:
    return ArtifactResponse(
        id=row.id,
        kind=kind,
        content_hash=row.content_hash,
        provider=row.provider,
        model=row.model,
        revision=getattr(row, "revision", None),
        schema_version=row.schema_version,
        created_at=row.created_at,
        data=stored_payload(row.data),
    )


async def _account(db: Session, user_id: int | None, *, required: bool = False) -> int | None:
    return await run_in_threadpool(resolve_account, db, user_id, required=required)


async def _generation_command(payload: GenerationRequest, db: Session, **extras: Any) -> GenerationCommand:
    return GenerationCommand(
        resume_text=payload.resume_text,
        job_description=payload.job_description,
        account_id=await _account(db, payload.user_id, required=True),
        raw_document_id=payload.raw_document_id,
        provider=payload.provider,
        model=payload.model,
        bypass_cache=payload.bypass_cache,
        **extras,
    )


@router.post("/resumes/extract", response_model=OperationResponse)
async def extract_resume(
    background_tasks: BackgroundTasks,
    file: UploadFile | None = File(None),
    text: str | None = Form(None),
    user_id: int | None = Form(None, alias="userId"),
    extraction_method: str = Form("auto", alias="extractionMethod"),
    provider: str | None = Form(None),
    model: str | None = Form(None),
    bypass_cache: bool = Form(False, alias="bypassCache"),
    db: Session = Depends(get_db),
    orchestrator: CacheOrchestrator = Depends(get_orchestrator),
    services: RoasterServices = Depends(get_services),
) -> OperationResponse:
    if extraction_method not in {"basic", "ai", "auto"}:
        raise ValidationError("extractionMethod must be one of basic, ai, auto")

    file_bytes = None
    filename = "resume.pdf"
    mime_type = "application/pdf"
    if file is not None:
        file_bytes = await file.read()
        if len(file_bytes) > MAX_UPLOAD_BYTES:
            raise ValidationError("File too large (max 10MB)")
        filename = file.filename or filename
        mime_type = file.content_type or mime_type
        if mime_type != "application/pdf" and not filename.lower().endswith(".pdf"):
            raise ValidationError("Only PDF uploads are supported")
    elif not (text or "").strip():
        raise ValidationError("No file or text provided")

    command = ResumeExtractionCommand(
        file_bytes=file_bytes,
        text=text,
        filename=filename,
        mime_type=mime_type,
        account_id=await _account(db, user_id),
        method=extraction_method,  # type: ignore[arg-type]
        provider=provider or None,
        model=model or None,
        bypass_cache=bypass_cache,
    )
    result = await orchestrator.extract_resume(command)
    return _respond(result, background_tasks, services)


@router.post("/job-postings/extract", response_model=OperationResponse)
async def extract_job_posting(
    payload: JobExtractionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: CacheOrchestrator = Depends(get_orchestrator),
    services: RoasterServices = Depends(get_services),
) -> OperationResponse:
    command = JobExtractionCommand(
        text=payload.text,
        account_id=await _account(db, payload.user_id),
        method=payload.extraction_method,
        provider=payload.provider,
        model=payload.model,
        bypass_cache=payload.bypass_cache,
    )
    result = await orchestrator.extract_job_posting(command)
    return _respond(result, background_tasks, services)


@router.post("/summaries/resume", response_model=OperationResponse)
async def summarize_resume(
    payload: SummaryRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: CacheOrchestrator = Depends(get_orchestrator),
    services: RoasterServices = Depends(get_services),
) -> OperationResponse:
    result = await orchestrator.summarize_resume(
        payload.source_id,
        account_id=await _account(db, payload.user_id, required=True),
        provider=payload.provider,
        model=payload.model,
        bypass_cache=payload.bypass_cache,
    )
    return _respond(result, background_tasks, services)


@router.post("/summaries/job-posting", response_model=OperationResponse)
async def summarize_job_posting(
    payload: SummaryRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: CacheOrchestrator = Depends(get_orchestrator),
    services: RoasterServices = Depends(get_services),
) -> OperationResponse:
    result = await orchestrator.summarize_job_posting(
        payload.source_id,
        account_id=await _account(db, payload.user_id, required=True),
        provider=payload.provider,
        model=payload.model,
        bypass_cache=payload.bypass_cache,
    )
    return _respond(result, background_tasks, services)


@router.post("/roasts", response_model=OperationResponse)
async def create_roast(
    payload: RoastRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: CacheOrchestrator = Depends(get_orchestrator),
    services: RoasterServices = Depends(get_services),
) -> OperationResponse:
    result = await orchestrator.generate_roast(await _generation_command(payload, db))
    return _respond(result, background_tasks, services)


@router.post("/cover-letters", response_model=OperationResponse)
async def create_cover_letter(
    payload: CoverLetterRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: CacheOrchestrator = Depends(get_orchestrator),
    services: RoasterServices = Depends(get_services),
) -> OperationResponse:
    command = await _generation_command(payload, db, tone=payload.tone)
    result = await orchestrator.generate_cover_letter(command)
    return _respond(result, background_tasks, services)


@router.post("/optimized-resumes", response_model=OperationResponse)
async def create_optimized_resume(
    payload: OptimizedResumeRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: CacheOrchestrator = Depends(get_orchestrator),
    services: RoasterServices = Depends(get_services),
) -> OperationResponse:
    command = await _generation_command(
        payload,
        db,
        template_id=payload.template_id,
        analysis_id=payload.analysis_id,
        analysis=payload.analysis,
    )
    result = await orchestrator.generate_optimized_resume(command)
    return _respond(result, background_tasks, services)


@router.post("/interview-prep", response_model=OperationResponse)
async def create_interview_prep(
    payload: InterviewPrepRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: CacheOrchestrator = Depends(get_orchestrator),
    services: RoasterServices = Depends(get_services),
) -> OperationResponse:
    command = await _generation_command(
        payload,
        db,
        difficulty=payload.difficulty,
        question_count=payload.question_count,
    )
    result = await orchestrator.generate_interview_prep(command)
    return _respond(result, background_tasks, services)


@router.get("/roasts", response_model=list[ArtifactResponse])
def list_roasts(
    user_id: int | None = Query(None, alias="userId"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> list[ArtifactResponse]:
    account_id = resolve_account(db, user_id, required=True)
    rows = Stores(db).generated("roast").list_recent(account_id, limit=limit)  # type: ignore[arg-type]
    return [_artifact("roast", row) for row in rows]


@router.get("/resumes", response_model=list[ArtifactResponse])
def list_resumes(
    user_id: int | None = Query(None, alias="userId"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> list[ArtifactResponse]:
    account_id = resolve_account(db, user_id, required=True)
    rows = Stores(db).extracted_documents.list_recent(account_id, limit=limit)  # type: ignore[arg-type]
    return [_artifact("resume", row) for row in rows]


@router.get("/artifacts/{kind}/{artifact_id}", response_model=ArtifactResponse)
def get_artifact(
    kind: str,
    artifact_id: int,
    user_id: int | None = Query(None, alias="userId"),
    db: Session = Depends(get_db),
) -> ArtifactResponse:
    account_id = resolve_account(db, user_id, required=True)
    row = Stores(db).by_kind(kind).get(artifact_id)
    if row is None or row.owner_id != account_id:
        raise NotFoundError(f"{kind} {artifact_id} not found")
    return _artifact(kind, row)


@router.post("/accounts", response_model=AccountResponse)
def create_account(payload: AccountCreateRequest, db: Session = Depends(get_db)) -> AccountResponse:
    account = AccountRepository(db).create(
        email=payload.email,
        name=payload.name,
        tier=payload.tier,
        bonus_credits=payload.bonus_credits,
    )
    return AccountResponse.model_validate(account, from_attributes=True)


@router.get("/accounts/{account_id}/quota", response_model=QuotaResponse)
def get_quota(
    account_id: int,
    db: Session = Depends(get_db),
    services: RoasterServices = Depends(get_services),
) -> QuotaResponse:
    status = UsageLedger(db, policy=services.settings.bonus_credit_policy).check_quota(account_id)  # type: ignore[arg-type]
    return QuotaResponse(
        allowed=status.allowed,
        can_roast=status.allowed,
        remaining=status.remaining,
        used=status.used,
        limit=status.limit,
        tier=status.tier,
        bonus_credits=status.bonus_credits,
    )


@router.get("/accounts/{account_id}/usage", response_model=UsageResponse)
def get_usage(
    account_id: int,
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    db: Session = Depends(get_db),
) -> UsageResponse:
    AccountRepository(db).require(account_id)
    stats = ProviderCallRepository(db).usage_stats(account_id, start=start, end=end)
    return UsageResponse.model_validate(stats)
