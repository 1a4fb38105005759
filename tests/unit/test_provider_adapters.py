from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from types import SimpleNamespace

import anthropic
import httpx
import openai
import pytest

from roaster.errors import ExternalServiceError, ParseError, ProviderTimeoutError, ValidationError
from roaster.llm.providers import (
    AdapterRegistry,
    AnthropicAdapter,
    OpenAIAdapter,
    ProviderConfig,
    parse_json,
)
from roaster.types import ProviderRequest, ToolSchema

TOOL = ToolSchema(name="emit", description="Emit data", parameters={"type": "object", "properties": {}})


class FakeCompletionsAPI:
    def __init__(self, fn):
        self._fn = fn
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return self._fn(**kwargs)


class FakeOpenAIClient:
    def __init__(self, fn):
        self.chat = SimpleNamespace(completions=FakeCompletionsAPI(fn))


class FakeAnthropicClient:
    def __init__(self, fn):
        self.messages = FakeCompletionsAPI(fn)


def _openai_response(*, content: str = "", tool_args: dict | None = None, finish_reason: str = "stop"):
    tool_calls = []
    if tool_args is not None:
        tool_calls.append(SimpleNamespace(function=SimpleNamespace(name="emit", arguments=json.dumps(tool_args))))
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=1000, completion_tokens=500),
    )


def _openai_adapter(fn, api_key: str = "dummy") -> OpenAIAdapter:
    adapter = OpenAIAdapter(ProviderConfig(name="openai", api_key=api_key, timeout_sec=5))
    adapter.client = FakeOpenAIClient(fn)
    return adapter


def _anthropic_adapter(fn) -> AnthropicAdapter:
    adapter = AnthropicAdapter(ProviderConfig(name="anthropic", api_key="dummy", timeout_sec=5))
    adapter.client = FakeAnthropicClient(fn)
    return adapter


def test_openai_tool_call_is_parsed_and_priced() -> None:
    adapter = _openai_adapter(lambda **kwargs: _openai_response(tool_args={"verdict": "ok"}, finish_reason="tool_calls"))
    request = ProviderRequest(prompt="roast", model="mini", system_prompt="be kind", tool=TOOL)

    result = asyncio.run(adapter.invoke(request))

    assert result.data == {"verdict": "ok"}
    assert result.parse_failed is False
    assert result.input_tokens == 1000 and result.output_tokens == 500
    assert result.total_tokens == 1500
    assert result.cost_usd == Decimal("0.001200")
    assert result.finish_reason == "tool_calls"

    sent = adapter.client.chat.completions.calls[0]
    assert sent["model"] == "gpt-4.1-mini"
    assert sent["messages"][0] == {"role": "system", "content": "be kind"}
    assert sent["tool_choice"]["function"]["name"] == "emit"
    assert "response_format" not in sent


def test_openai_json_mode_parses_fenced_output() -> None:
    adapter = _openai_adapter(lambda **kwargs: _openai_response(content='```json\n{"score": 5}\n```'))
    result = asyncio.run(adapter.invoke(ProviderRequest(prompt="x", model="nano")))

    assert result.data == {"score": 5}
    sent = adapter.client.chat.completions.calls[0]
    assert sent["response_format"] == {"type": "json_object"}


def test_openai_unparseable_output_falls_back_to_raw_text() -> None:
    adapter = _openai_adapter(lambda **kwargs: _openai_response(content="Sorry, here is prose."))
    result = asyncio.run(adapter.invoke(ProviderRequest(prompt="x", model="nano")))

    assert result.parse_failed is True
    assert result.data == {"raw_text": "Sorry, here is prose."}


def test_openai_images_are_sent_as_data_urls() -> None:
    adapter = _openai_adapter(lambda **kwargs: _openai_response(content="{}"))
    asyncio.run(adapter.invoke(ProviderRequest(prompt="read", model="mini", images=["QUJD", "data:image/png;base64,REVG"])))

    content = adapter.client.chat.completions.calls[0]["messages"][-1]["content"]
    assert content[0] == {"type": "text", "text": "read"}
    assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,QUJD"
    assert content[2]["image_url"]["url"] == "data:image/png;base64,REVG"


def test_openai_timeout_maps_to_provider_timeout() -> None:
    def fail(**kwargs):
        raise openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))

    adapter = _openai_adapter(fail)
    with pytest.raises(ProviderTimeoutError) as excinfo:
        asyncio.run(adapter.invoke(ProviderRequest(prompt="x", model="mini")))
    assert excinfo.value.service == "openai"
    assert excinfo.value.to_payload() == {"error": "openai request timed out"}


def test_provider_failure_is_sanitized() -> None:
    def fail(**kwargs):
        raise RuntimeError("invalid key sk-live-abc123")

    adapter = _openai_adapter(fail)
    with pytest.raises(ExternalServiceError) as excinfo:
        asyncio.run(adapter.invoke(ProviderRequest(prompt="x", model="mini")))
    assert "sk-live" not in json.dumps(excinfo.value.to_payload())


def test_model_from_other_provider_is_rejected_before_calling() -> None:
    adapter = _openai_adapter(lambda **kwargs: pytest.fail("should not be called"))
    with pytest.raises(ValidationError):
        asyncio.run(adapter.invoke(ProviderRequest(prompt="x", model="sonnet")))


def test_missing_api_key_is_an_external_failure() -> None:
    adapter = _openai_adapter(lambda **kwargs: pytest.fail("should not be called"), api_key="")
    with pytest.raises(ExternalServiceError):
        asyncio.run(adapter.invoke(ProviderRequest(prompt="x", model="mini")))


def test_anthropic_tool_use_with_images() -> None:
    def respond(**kwargs):
        return SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="thinking"),
                SimpleNamespace(type="tool_use", input={"personal_info": {"name": "Jane"}}),
            ],
            usage=SimpleNamespace(input_tokens=1000, output_tokens=500),
            stop_reason="tool_use",
        )

    adapter = _anthropic_adapter(respond)
    request = ProviderRequest(
        prompt="extract",
        model="sonnet",
        images=["data:image/jpeg;base64,AAAA", "BBBB"],
        system_prompt="system",
        tool=TOOL,
    )
    result = asyncio.run(adapter.invoke(request))

    assert result.data == {"personal_info": {"name": "Jane"}}
    assert result.cost_usd == Decimal("0.010500")
    assert result.finish_reason == "tool_use"

    sent = adapter.client.messages.calls[0]
    assert sent["model"] == "claude-sonnet-4-20250514"
    assert sent["system"] == "system"
    assert sent["tools"][0]["input_schema"] == TOOL.parameters
    blocks = sent["messages"][0]["content"]
    assert [block["type"] for block in blocks] == ["image", "image", "text"]
    assert blocks[0]["source"]["data"] == "AAAA"
    assert blocks[1]["source"]["data"] == "BBBB"


def test_anthropic_timeout_maps_to_provider_timeout() -> None:
    def fail(**kwargs):
        raise anthropic.APITimeoutError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))

    adapter = _anthropic_adapter(fail)
    with pytest.raises(ProviderTimeoutError):
        asyncio.run(adapter.invoke(ProviderRequest(prompt="x", model="opus")))


def test_parse_json_rejects_non_objects() -> None:
    for content in ("[1, 2]", "", "not json"):
        with pytest.raises(ParseError):
            parse_json(content)
    assert parse_json('{"a": 1}') == {"a": 1}
    assert parse_json('```json\n{"a": 2}\n```') == {"a": 2}


def test_hung_call_is_cut_off_at_the_configured_timeout() -> None:
    class HangingMessages:
        async def create(self, **kwargs):
            await asyncio.sleep(5)

    adapter = AnthropicAdapter(
        ProviderConfig(name="anthropic", api_key="dummy", timeout_sec=0.01),
        client=SimpleNamespace(messages=HangingMessages()),
    )
    with pytest.raises(ProviderTimeoutError):
        asyncio.run(adapter.invoke(ProviderRequest(prompt="x", model="sonnet")))


def test_registry_builds_adapters_once_and_rejects_unknown(settings) -> None:
    registry = AdapterRegistry(settings)
    first = registry.get("anthropic")
    assert isinstance(first, AnthropicAdapter)
    assert registry.get("anthropic") is first
    with pytest.raises(ValidationError):
        registry.get("mistral")
