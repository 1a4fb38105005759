from __future__ import annotations

import json
import logging
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PayloadValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from roaster.core.basic_extract import extract_pdf_text, heuristic_job_posting, heuristic_resume, truncate_text
from roaster.core.hasher import file_fingerprint, fingerprint, normalize_text
from roaster.core.ledger import UsageLedger
from roaster.core.runtime import RoasterServices
from roaster.core.scoring import ats_score, keywords_matched, render_resume_html
from roaster.core.telemetry import ProviderCallTelemetry
from roaster.core.tiers import TierSelector
from roaster.db.repositories import ContentStore, Stores
from roaster.errors import (
    AuthError,
    ExternalServiceError,
    NotFoundError,
    PersistenceConflict,
    ProviderTimeoutError,
    ValidationError,
)
from roaster.llm import prompts
from roaster.llm.catalog import RATE_TABLE_VERSION, compute_cost, get_model, is_known_pair
from roaster.types import (
    CoverLetterData,
    GenerationCommand,
    InterviewPrepData,
    JobExtractionCommand,
    JobPostingData,
    OperationResult,
    OptimizedResumeData,
    ProviderRequest,
    ProviderResult,
    ResumeData,
    ResumeExtractionCommand,
    RoastData,
    SummaryData,
    load_payload,
)

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[Resume truncated for processing...]"
DIFFICULTIES = {"easy", "medium", "hard"}
_ENVELOPE_FIELDS = {"kind", "schema_version"}


class RequestState(str, Enum):
    HASH_COMPUTED = "HASH_COMPUTED"
    CACHE_PROBE = "CACHE_PROBE"
    CACHE_HIT = "CACHE_HIT"
    CACHE_MISS = "CACHE_MISS"
    TIER_SELECTED = "TIER_SELECTED"
    VISION_ATTEMPTED = "VISION_ATTEMPTED"
    PROVIDER_INVOKED = "PROVIDER_INVOKED"
    PERSISTED = "PERSISTED"
    FAILED = "FAILED"


class Trace:
    def __init__(self, operation: str):
        self.operation = operation
        self.states: list[str] = []

    def enter(self, state: RequestState, **details: Any) -> None:
        self.states.append(state.value)
        logger.debug("%s -> %s %s", self.operation, state.value, details or "")


class CacheOrchestrator:
    """Fingerprint, look up, and on a miss call out and persist, for every artifact kind.

    Session work and PDF parsing are blocking, so they run in the worker
    threadpool; only provider and vision calls are awaited on the loop.
    """

    def __init__(self, session: Session, services: RoasterServices):
        self.session = session
        self.services = services
        self.settings = services.settings
        self.stores = Stores(session)
        self.ledger = UsageLedger(session, policy=self.settings.bonus_credit_policy)  # type: ignore[arg-type]
        self.tiers = TierSelector(
            default_provider=self.settings.default_provider,
            default_model=self.settings.default_model,
        )

    # -- extraction -------------------------------------------------------

    async def extract_resume(self, command: ResumeExtractionCommand) -> OperationResult:
        trace = Trace("extract_resume")
        source = command.file_bytes
        if not source:
            text = normalize_text(command.text or "")
            if not text:
                raise ValidationError("A PDF file or resume text is required")
            source = text.encode("utf-8")
        is_pdf = bool(command.file_bytes) and (
            command.mime_type == "application/pdf" or command.filename.lower().endswith(".pdf")
        )

        raw = await run_in_threadpool(self._ensure_raw_document, command, source, is_pdf=is_pdf)
        raw_id, file_hash, raw_text = raw.id, raw.file_hash, raw.extracted_text
        registered = command.account_id is not None
        provider, model = self.tiers.resolve(command.provider, command.model)
        wants_pages = self.tiers.needs_page_images(
            is_registered_user=registered,
            requested_method=command.method,
            provider=provider,
            model=model,
        )
        can_convert = is_pdf and self.services.vision.enabled

        decision = self.tiers.select(
            is_registered_user=registered,
            requested_method=command.method,
            provider=provider,
            model=model,
            has_page_images=wants_pages and (bool(raw.images) or can_convert),
        )
        trace.enter(RequestState.TIER_SELECTED, strategy=decision.strategy)
        content_hash = self._resume_key(file_hash, decision.strategy, decision.provider, decision.model)
        trace.enter(RequestState.HASH_COMPUTED, content_hash=content_hash[:12])

        store = self.stores.extracted_documents
        if not command.bypass_cache:
            cached = await self._lookup(store, content_hash, trace)
            if cached is not None:
                return self._cached_result(cached, trace, extraction_method=cached.extraction_method, raw=raw)

        images: list[str] = list(raw.images or [])
        if decision.strategy == "vision" and not images:
            images = await self.services.vision.pdf_to_images(command.file_bytes or b"")
            trace.enter(RequestState.VISION_ATTEMPTED, image_count=len(images))
            if images:
                raw = await run_in_threadpool(self.stores.raw_documents.attach_images, raw, images)
            else:
                decision = self.tiers.select(
                    is_registered_user=registered,
                    requested_method=command.method,
                    provider=provider,
                    model=model,
                    has_page_images=False,
                )
                trace.enter(RequestState.TIER_SELECTED, strategy=decision.strategy, fallback=True)
                content_hash = self._resume_key(file_hash, decision.strategy, decision.provider, decision.model)
                trace.enter(RequestState.HASH_COMPUTED, content_hash=content_hash[:12])
                if not command.bypass_cache:
                    cached = await self._lookup(store, content_hash, trace)
                    if cached is not None:
                        return self._cached_result(cached, trace, extraction_method=cached.extraction_method, raw=raw)

        use_images = images if decision.strategy == "vision" else []
        resume_text = truncate_text(raw_text, self.settings.max_resume_chars, TRUNCATION_MARKER)

        result: ProviderResult | None = None
        call: ProviderCallTelemetry | None = None
        if decision.strategy == "basic":
            payload = heuristic_resume(raw_text).model_dump()
        else:
            if not resume_text and not use_images:
                raise ValidationError("No text could be extracted from the uploaded document")
            template = (
                prompts.RESUME_VISION_EXTRACTION_PROMPT
                if decision.strategy == "vision"
                else prompts.RESUME_TEXT_EXTRACTION_PROMPT
            )
            request = ProviderRequest(
                prompt=template.format(resume_text=resume_text),
                model=decision.model,  # type: ignore[arg-type]
                images=use_images,
                max_tokens=4000,
                temperature=0.1,
                system_prompt=prompts.RESUME_SYSTEM_PROMPT,
                tool=prompts.tool_for(
                    ResumeData,
                    name="extract_resume_data",
                    description="Return the structured contents of the resume.",
                ),
            )
            result, call = await self._invoke(
                trace,
                operation=f"resume_extraction_{decision.strategy}",
                account_id=command.account_id,
                provider=decision.provider or "",
                request=request,
            )
            payload = coerce_payload(ResumeData, result)

        attributes = {
            "content_hash": content_hash,
            "raw_document_id": raw_id,
            "owner_id": command.account_id,
            "extraction_method": decision.strategy,
            "provider": decision.provider or "",
            "model": decision.model or "",
            "schema_version": payload["schema_version"],
            "data": payload,
        }
        row, race_lost, stored = await self._settle(
            trace,
            store,
            attributes,
            call=call,
            artifact_kind="extracted_document",
            charge_account=None,
            keep_existing=command.bypass_cache,
        )
        data = payload if not race_lost else row.data
        return self._fresh_result(
            row,
            trace,
            data=data,
            result=result,
            provider=decision.provider,
            model=decision.model,
            race_lost=race_lost,
            stored=stored,
            extraction_method=decision.strategy,
            has_images=bool(use_images),
            image_count=len(use_images),
            extra={"raw_document_id": raw_id, "file_hash": file_hash},
        )

    async def extract_job_posting(self, command: JobExtractionCommand) -> OperationResult:
        trace = Trace("extract_job_posting")
        job_text = normalize_text(command.text or "")
        if not job_text:
            raise ValidationError("Job description text is required")
        job_text = truncate_text(job_text, self.settings.max_job_chars)

        decision = self.tiers.select(
            is_registered_user=command.account_id is not None,
            requested_method=command.method,
            provider=command.provider,
            model=command.model,
            has_page_images=False,
        )
        trace.enter(RequestState.TIER_SELECTED, strategy=decision.strategy)
        content_hash = fingerprint([job_text, decision.strategy, prompts.JOB_EXTRACTION_VERSION])
        trace.enter(RequestState.HASH_COMPUTED, content_hash=content_hash[:12])

        store = self.stores.job_postings
        if not command.bypass_cache:
            cached = await self._lookup(store, content_hash, trace)
            if cached is not None:
                return self._cached_result(cached, trace, extraction_method=cached.extraction_method)

        result: ProviderResult | None = None
        call: ProviderCallTelemetry | None = None
        if decision.strategy == "basic":
            payload = heuristic_job_posting(job_text).model_dump()
        else:
            request = ProviderRequest(
                prompt=prompts.JOB_EXTRACTION_PROMPT.format(job_text=job_text),
                model=decision.model,  # type: ignore[arg-type]
                max_tokens=2000,
                temperature=0.1,
                tool=prompts.tool_for(
                    JobPostingData,
                    name="extract_job_posting",
                    description="Return the structured contents of the job description.",
                ),
            )
            result, call = await self._invoke(
                trace,
                operation="job_extraction",
                account_id=command.account_id,
                provider=decision.provider or "",
                request=request,
            )
            payload = coerce_payload(JobPostingData, result)

        attributes = {
            "content_hash": content_hash,
            "owner_id": command.account_id,
            "original_text": job_text,
            "extraction_method": decision.strategy,
            "provider": decision.provider or "",
            "model": decision.model or "",
            "schema_version": payload["schema_version"],
            "data": payload,
        }
        row, race_lost, stored = await self._settle(
            trace,
            store,
            attributes,
            call=call,
            artifact_kind="extracted_job_posting",
            charge_account=None,
            keep_existing=command.bypass_cache,
        )
        return self._fresh_result(
            row,
            trace,
            data=payload if not race_lost else row.data,
            result=result,
            provider=decision.provider,
            model=decision.model,
            race_lost=race_lost,
            stored=stored,
            extraction_method=decision.strategy,
        )

    # -- summaries --------------------------------------------------------

    async def summarize_resume(
        self,
        extracted_id: int,
        *,
        account_id: int | None,
        provider: str | None = None,
        model: str | None = None,
        bypass_cache: bool = False,
    ) -> OperationResult:
        source = await run_in_threadpool(self.stores.extracted_documents.get, extracted_id)
        if source is None:
            raise NotFoundError(f"extracted resume {extracted_id} not found")
        return await self._summarize(
            "resume",
            source,
            self.stores.summarized_documents,
            {"extracted_document_id": source.id},
            account_id=account_id,
            provider=provider,
            model=model,
            bypass_cache=bypass_cache,
        )

    async def summarize_job_posting(
        self,
        job_posting_id: int,
        *,
        account_id: int | None,
        provider: str | None = None,
        model: str | None = None,
        bypass_cache: bool = False,
    ) -> OperationResult:
        source = await run_in_threadpool(self.stores.job_postings.get, job_posting_id)
        if source is None:
            raise NotFoundError(f"job posting {job_posting_id} not found")
        return await self._summarize(
            "job_posting",
            source,
            self.stores.summarized_job_postings,
            {"extracted_job_posting_id": source.id},
            account_id=account_id,
            provider=provider,
            model=model,
            bypass_cache=bypass_cache,
        )

    async def _summarize(
        self,
        source_kind: str,
        source: Any,
        store: ContentStore[Any],
        link: dict[str, int],
        *,
        account_id: int | None,
        provider: str | None,
        model: str | None,
        bypass_cache: bool,
    ) -> OperationResult:
        trace = Trace(f"summarize_{source_kind}")
        if account_id is None:
            raise AuthError("Sign in to generate summaries")
        provider, model = self._require_model(provider, model)

        content_hash = fingerprint([source_kind, source.content_hash, provider, model, prompts.SUMMARY_VERSION])
        trace.enter(RequestState.HASH_COMPUTED, content_hash=content_hash[:12])
        if not bypass_cache:
            cached = await self._lookup(store, content_hash, trace)
            if cached is not None:
                return self._cached_result(cached, trace)

        trace.enter(RequestState.TIER_SELECTED, strategy="text")
        source_json = json.dumps(source.data, ensure_ascii=True, default=str)
        request = ProviderRequest(
            prompt=prompts.SUMMARY_PROMPT.format(
                source_kind=source_kind.replace("_", " "),
                source_kind_upper=source_kind.replace("_", " ").upper(),
                source_json=source_json[: self.settings.max_job_chars],
            ),
            model=model,  # type: ignore[arg-type]
            max_tokens=1000,
            temperature=0.3,
        )
        result, call = await self._invoke(
            trace,
            operation=f"{source_kind}_summary",
            account_id=account_id,
            provider=provider,
            request=request,
        )
        payload = coerce_payload(SummaryData, result, source_kind=source_kind)
        attributes = {
            "content_hash": content_hash,
            "owner_id": account_id,
            "provider": provider,
            "model": model,
            "schema_version": payload["schema_version"],
            "data": payload,
            **link,
        }
        row, race_lost, stored = await self._settle(
            trace,
            store,
            attributes,
            call=call,
            artifact_kind=f"summarized_{source_kind}",
            charge_account=None,
            keep_existing=bypass_cache,
        )
        return self._fresh_result(
            row,
            trace,
            data=payload if not race_lost else row.data,
            result=result,
            provider=provider,
            model=model,
            race_lost=race_lost,
            stored=stored,
        )

    # -- generation -------------------------------------------------------

    async def generate_roast(self, command: GenerationCommand) -> OperationResult:
        def columns(payload: dict[str, Any]) -> dict[str, Any]:
            score = payload.get("overall_score")
            return {"overall_score": max(0, min(100, int(score))) if isinstance(score, (int, float)) else None}

        return await self._generate(
            "roast",
            command,
            build_prompt=lambda resume, job: prompts.ROAST_PROMPT.format(
                job_clause=prompts.job_clause(job),
                job_block=prompts.job_block(job),
                resume_text=resume,
            ),
            payload_cls=RoastData,
            system_prompt=prompts.ROAST_SYSTEM_PROMPT,
            max_tokens=3000,
            temperature=0.7,
            columns=columns,
        )

    async def generate_cover_letter(self, command: GenerationCommand) -> OperationResult:
        tone = command.tone.strip().lower() or "professional"
        if len(tone) > 40:
            raise ValidationError("tone must be at most 40 characters")

        return await self._generate(
            "cover_letter",
            command,
            build_prompt=lambda resume, job: prompts.COVER_LETTER_PROMPT.format(
                tone=tone,
                job_clause=prompts.job_clause(job),
                job_block=prompts.job_block(job),
                resume_text=resume,
            ),
            payload_cls=CoverLetterData,
            max_tokens=2000,
            temperature=0.7,
            extra_parts=[tone],
            columns=lambda payload: {"tone": tone},
        )

    async def generate_optimized_resume(self, command: GenerationCommand) -> OperationResult:
        template_id = command.template_id or self.settings.default_template_id
        analysis_id = command.analysis_id or ""
        job_description = command.job_description

        def columns(payload: dict[str, Any]) -> dict[str, Any]:
            return {
                "template_id": template_id,
                "analysis_id": analysis_id,
                "content": render_resume_html(payload, template_id),
                "ats_score": ats_score(payload),
                "keywords_matched": keywords_matched(payload, job_description),
            }

        return await self._generate(
            "optimized_resume",
            command,
            build_prompt=lambda resume, job: prompts.OPTIMIZE_RESUME_PROMPT.format(
                job_block=prompts.job_block(job),
                resume_text=resume,
                analysis_block=prompts.analysis_block(command.analysis),
            ),
            payload_cls=OptimizedResumeData,
            system_prompt=prompts.OPTIMIZE_RESUME_SYSTEM_PROMPT,
            tool_name="optimize_resume_data",
            max_tokens=4000,
            temperature=0.3,
            extra_parts=[template_id, analysis_id],
            columns=columns,
        )

    async def generate_interview_prep(self, command: GenerationCommand) -> OperationResult:
        difficulty = command.difficulty.strip().lower()
        if difficulty not in DIFFICULTIES:
            raise ValidationError(f"difficulty must be one of {sorted(DIFFICULTIES)}")
        if command.question_count < 1 or command.question_count > 25:
            raise ValidationError("question_count must be between 1 and 25")

        return await self._generate(
            "interview_prep",
            command,
            build_prompt=lambda resume, job: prompts.INTERVIEW_PREP_PROMPT.format(
                question_count=command.question_count,
                difficulty=difficulty,
                job_clause=prompts.job_clause(job),
                job_block=prompts.job_block(job),
                resume_text=resume,
            ),
            payload_cls=InterviewPrepData,
            max_tokens=4000,
            temperature=0.5,
            extra_parts=[difficulty, str(command.question_count)],
            columns=lambda payload: {
                "difficulty": difficulty,
                "question_count": len(payload.get("questions") or []),
            },
        )

    async def _generate(
        self,
        kind: str,
        command: GenerationCommand,
        *,
        build_prompt: Callable[[str, str], str],
        payload_cls: type[BaseModel],
        columns: Callable[[dict[str, Any]], dict[str, Any]],
        system_prompt: str | None = None,
        tool_name: str | None = None,
        max_tokens: int = 3000,
        temperature: float = 0.5,
        extra_parts: list[str] | None = None,
    ) -> OperationResult:
        trace = Trace(f"generate_{kind}")
        if command.account_id is None:
            raise AuthError("Authentication required")
        provider, model = self._require_model(command.provider, command.model)

        resume_text = truncate_text(
            normalize_text(command.resume_text or ""),
            self.settings.max_resume_chars,
            TRUNCATION_MARKER,
        )
        if not resume_text:
            raise ValidationError("Resume text is required")
        job_text = truncate_text(normalize_text(command.job_description or ""), self.settings.max_job_chars)

        content_hash = fingerprint(
            [kind, prompts.GENERATION_VERSION, resume_text, job_text, provider, model, *(extra_parts or [])]
        )
        trace.enter(RequestState.HASH_COMPUTED, content_hash=content_hash[:12])

        store = self.stores.generated(kind)
        if not command.bypass_cache:
            cached = await self._lookup(store, content_hash, trace, owner_id=command.account_id)
            if cached is not None:
                return self._cached_result(cached, trace, extra=self._side_metadata(cached))

        quota = await run_in_threadpool(self.ledger.require_quota, command.account_id)
        trace.enter(RequestState.TIER_SELECTED, strategy="text", quota_remaining=quota.remaining)

        tool = None
        if tool_name:
            tool = prompts.tool_for(payload_cls, name=tool_name, description=f"Return the {kind.replace('_', ' ')}.")
        request = ProviderRequest(
            prompt=build_prompt(resume_text, job_text),
            model=model,  # type: ignore[arg-type]
            max_tokens=max_tokens,
            temperature=temperature,
            system_prompt=system_prompt,
            tool=tool,
        )
        result, call = await self._invoke(
            trace,
            operation=f"{kind}_generation",
            account_id=command.account_id,
            provider=provider,
            request=request,
        )
        payload = coerce_payload(payload_cls, result)
        side = columns(payload)
        revision = 0
        if command.bypass_cache:
            revision = await run_in_threadpool(store.next_revision, content_hash, command.account_id)

        attributes = {
            "content_hash": content_hash,
            "revision": revision,
            "owner_id": command.account_id,
            "raw_document_id": command.raw_document_id,
            "provider": provider,
            "model": model,
            "schema_version": payload["schema_version"],
            "data": payload,
            **side,
        }
        row, race_lost, stored = await self._settle(
            trace,
            store,
            attributes,
            call=call,
            artifact_kind=kind,
            charge_account=command.account_id,
            scope={"owner_id": command.account_id},
        )
        return self._fresh_result(
            row,
            trace,
            data=payload if not race_lost else row.data,
            result=result,
            provider=provider,
            model=model,
            race_lost=race_lost,
            stored=stored,
            extra=self._side_metadata(row),
        )

    # -- shared steps -----------------------------------------------------

    def _ensure_raw_document(self, command: ResumeExtractionCommand, source: bytes, *, is_pdf: bool) -> Any:
        file_hash = file_fingerprint(source)
        store = self.stores.raw_documents
        existing = store.find_by_hash(file_hash)
        if existing is not None:
            return existing

        text = extract_pdf_text(source) if is_pdf else source.decode("utf-8", errors="replace")
        try:
            return store.create(
                file_hash=file_hash,
                filename=command.filename if command.file_bytes else "pasted.txt",
                mime_type=command.mime_type if command.file_bytes else "text/plain",
                owner_id=command.account_id,
                images=[],
                metadata_json={
                    "size_bytes": len(source),
                    "source": "upload" if command.file_bytes else "text",
                    "image_count": 0,
                },
                extracted_text=text,
            )
        except PersistenceConflict:
            winner = store.find_by_hash(file_hash)
            if winner is None:
                raise
            return winner

    def _resume_key(self, file_hash: str, strategy: str, provider: str | None, model: str | None) -> str:
        return fingerprint([file_hash, strategy, provider or "", model or "", prompts.RESUME_EXTRACTION_VERSION])

    def _require_model(self, provider: str | None, model: str | None) -> tuple[str, str]:
        provider, model = self.tiers.resolve(provider, model)
        if not is_known_pair(provider, model):
            raise ValidationError(f"unsupported provider/model combination '{provider}/{model}'")
        return provider, model  # type: ignore[return-value]

    async def _lookup(self, store: ContentStore[Any], content_hash: str, trace: Trace, **scope: Any) -> Any:
        trace.enter(RequestState.CACHE_PROBE)
        row = await run_in_threadpool(store.find_by_hash, content_hash, **scope)
        if row is not None:
            trace.enter(RequestState.CACHE_HIT, row_id=row.id)
            logger.info("Cache hit operation=%s hash=%s", trace.operation, content_hash[:12])
            return row
        trace.enter(RequestState.CACHE_MISS)
        return None

    async def _invoke(
        self,
        trace: Trace,
        *,
        operation: str,
        account_id: int | None,
        provider: str,
        request: ProviderRequest,
    ) -> tuple[ProviderResult, ProviderCallTelemetry]:
        adapter = self.services.adapters.get(provider)
        model = request.model
        try:
            result = await adapter.invoke(request)
        except ExternalServiceError as exc:
            trace.enter(RequestState.FAILED, error=type(exc).__name__)
            status = "timeout" if isinstance(exc, ProviderTimeoutError) else "failed"
            self.services.telemetry.record_call(
                ProviderCallTelemetry(
                    owner_id=account_id,
                    provider=provider,
                    model=model,
                    operation=operation,
                    status=status,
                    error_message=exc.message[:2000],
                    messages=[self._prompt_message(request, 0, Decimal("0"))],
                )
            )
            raise

        trace.enter(RequestState.PROVIDER_INVOKED, tokens=result.total_tokens, latency_ms=result.latency_ms)
        logger.info(
            "Provider call completed operation=%s provider=%s model=%s tokens=%s cost=%s",
            operation,
            provider,
            model,
            result.total_tokens,
            result.cost_usd,
        )
        call = ProviderCallTelemetry(
            owner_id=account_id,
            provider=provider,
            model=model,
            operation=operation,
            status="completed",
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost_usd=result.cost_usd,
            processing_time_ms=result.latency_ms,
            messages=[
                self._prompt_message(request, result.input_tokens, compute_cost(model, result.input_tokens, 0)),
                {
                    "role": "assistant",
                    "content": json.dumps(result.data, ensure_ascii=True, default=str),
                    "output_tokens": result.output_tokens,
                    "total_tokens": result.output_tokens,
                    "cost_usd": compute_cost(model, 0, result.output_tokens),
                    "processing_time_ms": result.latency_ms,
                    "finish_reason": result.finish_reason,
                    "metadata_json": {"parse_failed": result.parse_failed},
                },
            ],
        )
        return result, call

    @staticmethod
    def _prompt_message(request: ProviderRequest, input_tokens: int, cost: Decimal) -> dict[str, Any]:
        return {
            "role": "user",
            "content": request.prompt,
            "input_tokens": input_tokens,
            "total_tokens": input_tokens,
            "cost_usd": cost,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "metadata_json": {
                "image_count": len(request.images),
                "system_prompt": bool(request.system_prompt),
                "tool": request.tool.name if request.tool else "",
            },
        }

    async def _settle(
        self,
        trace: Trace,
        store: ContentStore[Any],
        attributes: dict[str, Any],
        *,
        call: ProviderCallTelemetry | None,
        artifact_kind: str,
        charge_account: int | None,
        keep_existing: bool = False,
        scope: dict[str, Any] | None = None,
    ) -> tuple[Any, bool, bool]:
        """Persist a fresh artifact; returns ``(row, race_lost, stored)``.

        A unique-hash conflict means another request stored the same
        fingerprint first: that row is returned instead. Paid-call telemetry
        and usage charges are queued whatever happens to the write.
        """
        telemetry = self.services.telemetry
        try:
            row, race_lost, stored = await run_in_threadpool(
                self._store, trace, store, attributes, keep_existing, scope or {}
            )
        except Exception:
            trace.enter(RequestState.FAILED, stage="persist")
            logger.exception("Failed to persist %s; recording spend anyway", artifact_kind)
            if call is not None:
                call.error_message = "artifact persistence failed"
                telemetry.record_call(call)
                if charge_account is not None:
                    telemetry.charge(charge_account, call.operation)
            raise

        trace.enter(RequestState.PERSISTED, row_id=row.id)
        if call is not None:
            call.artifact_kind = artifact_kind
            call.artifact_id = row.id
            telemetry.record_call(call)
            if charge_account is not None:
                telemetry.charge(charge_account, call.operation)
        return row, race_lost, stored

    @staticmethod
    def _store(
        trace: Trace,
        store: ContentStore[Any],
        attributes: dict[str, Any],
        keep_existing: bool,
        scope: dict[str, Any],
    ) -> tuple[Any, bool, bool]:
        content_hash = attributes[store.hash_column]
        try:
            return store.create(**attributes), False, True
        except PersistenceConflict:
            row = store.find_by_hash(content_hash, **scope)
            if row is None:
                raise
        race_lost = not keep_existing
        if race_lost:
            logger.info("Lost persistence race operation=%s hash=%s", trace.operation, content_hash[:12])
        return row, race_lost, False

    def _cached_result(
        self,
        row: Any,
        trace: Trace,
        *,
        extraction_method: str | None = None,
        raw: Any = None,
        extra: dict[str, Any] | None = None,
    ) -> OperationResult:
        images = list(raw.images or []) if raw is not None and extraction_method == "vision" else []
        metadata = {
            "from_database": True,
            "provider": row.provider or None,
            "model": row.model or None,
            "created_at": row.created_at.isoformat() if row.created_at else None,
            "tokens_used": 0,
            "processing_time": 0,
            "estimated_cost": 0.0,
        }
        if raw is not None:
            metadata.update({"raw_document_id": raw.id, "file_hash": raw.file_hash})
        metadata.update(extra or {})
        return OperationResult(
            data=stored_payload(row.data),
            cached=True,
            artifact_id=row.id,
            content_hash=getattr(row, "content_hash", ""),
            extraction_method=extraction_method,  # type: ignore[arg-type]
            has_images=bool(images),
            image_count=len(images),
            metadata=metadata,
            states=list(trace.states),
        )

    def _fresh_result(
        self,
        row: Any,
        trace: Trace,
        *,
        data: dict[str, Any],
        result: ProviderResult | None,
        provider: str | None,
        model: str | None,
        race_lost: bool,
        stored: bool,
        extraction_method: str | None = None,
        has_images: bool = False,
        image_count: int = 0,
        extra: dict[str, Any] | None = None,
    ) -> OperationResult:
        spec = get_model(model or "")
        metadata: dict[str, Any] = {
            "from_database": race_lost,
            "provider": provider,
            "model": model,
            "model_id": spec.model_id if spec and result is not None else None,
            "tokens_used": result.total_tokens if result else 0,
            "input_tokens": result.input_tokens if result else 0,
            "output_tokens": result.output_tokens if result else 0,
            "processing_time": result.latency_ms if result else 0,
            "estimated_cost": float(result.cost_usd) if result else 0.0,
            "credit_cost": spec.credit_cost if spec and result is not None else 0,
            "finish_reason": result.finish_reason if result else "",
            "parse_failed": result.parse_failed if result else False,
            "rate_table_version": RATE_TABLE_VERSION,
            "race_lost": race_lost,
            "stored": stored,
        }
        if not stored and not race_lost:
            # A bypass that hit an existing row returns data that was never stored.
            metadata["existing_artifact_id"] = row.id
        metadata.update(extra or {})
        return OperationResult(
            data=stored_payload(row.data) if race_lost else data,
            cached=race_lost,
            artifact_id=row.id if stored or race_lost else None,
            content_hash=getattr(row, "content_hash", ""),
            extraction_method=extraction_method,  # type: ignore[arg-type]
            has_images=has_images,
            image_count=image_count,
            metadata=metadata,
            states=list(trace.states),
        )

    @staticmethod
    def _side_metadata(row: Any) -> dict[str, Any]:
        metadata: dict[str, Any] = {"revision": row.revision}
        for column in (
            "overall_score",
            "tone",
            "template_id",
            "analysis_id",
            "ats_score",
            "keywords_matched",
            "content",
            "difficulty",
            "question_count",
        ):
            if hasattr(row, column):
                metadata[column] = getattr(row, column)
        return metadata


def coerce_payload(payload_cls: type[BaseModel], result: ProviderResult, **defaults: Any) -> dict[str, Any]:
    """Validates provider output into the versioned payload, keeping raw text when it does not fit."""
    data = {key: value for key, value in result.data.items() if key not in _ENVELOPE_FIELDS}
    try:
        return payload_cls.model_validate({**defaults, **data}).model_dump()
    except PayloadValidationError:
        logger.warning("Provider output does not match %s; keeping raw text", payload_cls.__name__)
        raw_text = result.raw_text or json.dumps(result.data, ensure_ascii=True, default=str)
        return payload_cls.model_validate({**defaults, "raw_text": raw_text}).model_dump()


def stored_payload(data: dict[str, Any] | None) -> dict[str, Any]:
    """Reads a stored blob back through the payload union; rows that no longer validate are returned as stored."""
    try:
        return load_payload(dict(data or {})).model_dump()
    except PayloadValidationError:
        logger.warning("Stored payload does not match any artifact schema kind=%s", (data or {}).get("kind"))
        return dict(data or {})
