from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from roaster.config import Settings
from roaster.errors import ExternalServiceError, ParseError, ProviderTimeoutError, ValidationError
from roaster.llm.catalog import compute_cost, get_model
from roaster.types import ProviderRequest, ProviderResult

logger = logging.getLogger(__name__)

RAW_TEXT_FIELD = "raw_text"


@dataclass(slots=True)
class ProviderConfig:
    name: str
    api_key: str
    timeout_sec: float
    base_url: str | None = None


@dataclass(slots=True)
class Completion:
    text: str = ""
    tool_input: Any = None
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(ABC):
    """Uniform ``invoke`` over one AI provider.

    Subclasses only translate the request into the provider's wire shape and
    read tokens and text back out; cost, latency, timeout mapping and the
    raw-text fallback for unparseable output live here.
    """

    name: str
    timeout_errors: tuple[type[BaseException], ...] = (TimeoutError,)

    def __init__(self, config: ProviderConfig):
        self.config = config

    async def invoke(self, request: ProviderRequest) -> ProviderResult:
        spec = get_model(request.model)
        if spec is None or spec.provider != self.name:
            raise ValidationError(f"model '{request.model}' is not served by provider '{self.name}'")
        if not self.config.api_key:
            raise ExternalServiceError(f"{self.name} API key not configured", service=self.name)

        started = time.perf_counter()
        try:
            completion = await asyncio.wait_for(
                self._call_api(spec.model_id, request),
                timeout=self.config.timeout_sec,
            )
        except self.timeout_errors as exc:
            logger.warning("Provider call timed out provider=%s model=%s", self.name, spec.model_id)
            raise ProviderTimeoutError(str(exc), service=self.name) from exc
        except Exception as exc:
            logger.warning("Provider call failed provider=%s model=%s error=%s", self.name, spec.model_id, exc)
            raise ExternalServiceError(str(exc), service=self.name) from exc
        latency_ms = int((time.perf_counter() - started) * 1000)

        data, parse_failed = structured_output(
            completion,
            expect_json=request.expect_json or request.tool is not None,
        )
        return ProviderResult(
            data=data,
            raw_text=completion.text,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            total_tokens=completion.input_tokens + completion.output_tokens,
            cost_usd=compute_cost(request.model, completion.input_tokens, completion.output_tokens),
            latency_ms=latency_ms,
            finish_reason=completion.finish_reason,
            parse_failed=parse_failed,
        )

    @abstractmethod
    async def _call_api(self, model_id: str, request: ProviderRequest) -> Completion:
        """Make a single API call (no retries)."""

    async def aclose(self) -> None:
        return None


class OpenAIAdapter(ProviderAdapter):
    name = "openai"
    timeout_errors = (openai.APITimeoutError, TimeoutError)

    def __init__(self, config: ProviderConfig, client: Any = None):
        super().__init__(config)
        self.client = client or AsyncOpenAI(
            base_url=config.base_url,
            api_key=config.api_key or "unset",
            timeout=float(config.timeout_sec),
            max_retries=0,
        )

    async def _call_api(self, model_id: str, request: ProviderRequest) -> Completion:
        content: Any = request.prompt
        if request.images:
            content = [{"type": "text", "text": request.prompt}] + [
                {"type": "image_url", "image_url": {"url": as_data_url(image), "detail": "high"}}
                for image in request.images
            ]

        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": content})

        kwargs: dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        if request.tool is not None:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": request.tool.name,
                        "description": request.tool.description,
                        "parameters": request.tool.parameters,
                    },
                }
            ]
            kwargs["tool_choice"] = {"type": "function", "function": {"name": request.tool.name}}
        elif request.expect_json:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**kwargs)

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        finish_reason = str(getattr(choices[0], "finish_reason", "") or "") if choices else ""

        tool_input = None
        for call in getattr(message, "tool_calls", None) or []:
            function = getattr(call, "function", None)
            if function is not None and getattr(function, "name", "") == getattr(request.tool, "name", None):
                try:
                    tool_input = parse_json(getattr(function, "arguments", "") or "")
                except ParseError:
                    logger.warning("Tool call arguments are not a JSON object; using message text")
                break

        text = getattr(message, "content", "") if message is not None else ""
        usage = getattr(response, "usage", None)
        return Completion(
            text=text if isinstance(text, str) else str(text or ""),
            tool_input=tool_input,
            input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
            finish_reason=finish_reason,
        )

    async def aclose(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()


class AnthropicAdapter(ProviderAdapter):
    name = "anthropic"
    timeout_errors = (anthropic.APITimeoutError, TimeoutError)

    def __init__(self, config: ProviderConfig, client: Any = None):
        super().__init__(config)
        self.client = client or AsyncAnthropic(
            api_key=config.api_key or "unset",
            timeout=float(config.timeout_sec),
            max_retries=0,
        )

    async def _call_api(self, model_id: str, request: ProviderRequest) -> Completion:
        content: list[dict[str, Any]] = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": "image/jpeg", "data": strip_data_url(image)},
            }
            for image in request.images
        ]
        content.append({"type": "text", "text": request.prompt})

        kwargs: dict[str, Any] = {
            "model": model_id,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt
        if request.tool is not None:
            kwargs["tools"] = [
                {
                    "name": request.tool.name,
                    "description": request.tool.description,
                    "input_schema": request.tool.parameters,
                }
            ]
            kwargs["tool_choice"] = {"type": "tool", "name": request.tool.name}

        response = await self.client.messages.create(**kwargs)

        texts: list[str] = []
        tool_input = None
        for block in getattr(response, "content", None) or []:
            block_type = getattr(block, "type", "")
            if block_type == "tool_use" and tool_input is None:
                tool_input = getattr(block, "input", None)
            elif block_type == "text":
                texts.append(getattr(block, "text", "") or "")

        usage = getattr(response, "usage", None)
        return Completion(
            text="\n".join(texts),
            tool_input=tool_input,
            input_tokens=int(getattr(usage, "input_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "output_tokens", 0) or 0),
            finish_reason=str(getattr(response, "stop_reason", "") or ""),
        )

    async def aclose(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()


def as_data_url(image: str) -> str:
    if image.startswith("data:"):
        return image
    return f"data:image/jpeg;base64,{image}"


def strip_data_url(image: str) -> str:
    if image.startswith("data:") and "," in image:
        return image.split(",", 1)[1]
    return image


def structured_output(completion: Completion, *, expect_json: bool) -> tuple[dict[str, Any], bool]:
    if isinstance(completion.tool_input, dict):
        return completion.tool_input, False
    if not expect_json:
        return {RAW_TEXT_FIELD: completion.text}, False

    try:
        return parse_json(completion.text), False
    except ParseError as exc:
        logger.warning("Structured output missing (%s); returning raw text (%s chars)", exc, len(completion.text))
        return {RAW_TEXT_FIELD: completion.text}, True


def parse_json(content: str) -> dict[str, Any]:
    candidate = content.strip()
    if not candidate:
        raise ParseError("empty model output")

    if "```" in candidate:
        parts = candidate.split("```")
        for part in parts:
            part = part.strip()
            if part.startswith("json"):
                part = part[4:].strip()
            if part.startswith("{") and part.endswith("}"):
                candidate = part
                break

    try:
        value = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ParseError(f"model output is not JSON: {exc.msg}") from exc
    if not isinstance(value, dict):
        raise ParseError("model output is not a JSON object")
    return value


class AdapterRegistry:
    """One adapter per provider, built on first use and kept for the process lifetime."""

    def __init__(self, settings: Settings, adapters: dict[str, ProviderAdapter] | None = None):
        self.settings = settings
        self._adapters: dict[str, ProviderAdapter] = dict(adapters or {})

    def get(self, provider: str) -> ProviderAdapter:
        adapter = self._adapters.get(provider)
        if adapter is not None:
            return adapter

        if provider == "openai":
            adapter = OpenAIAdapter(
                ProviderConfig(
                    name="openai",
                    api_key=self.settings.openai_api_key,
                    timeout_sec=self.settings.openai_timeout_sec,
                    base_url=self.settings.openai_base_url,
                )
            )
        elif provider == "anthropic":
            adapter = AnthropicAdapter(
                ProviderConfig(
                    name="anthropic",
                    api_key=self.settings.anthropic_api_key,
                    timeout_sec=self.settings.anthropic_timeout_sec,
                )
            )
        else:
            raise ValidationError(f"unsupported provider '{provider}'")

        self._adapters[provider] = adapter
        return adapter

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
