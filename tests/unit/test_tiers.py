from __future__ import annotations

import pytest

from roaster.core.tiers import TierSelector, resolve_provider_model


@pytest.fixture()
def selector() -> TierSelector:
    return TierSelector(default_provider="openai", default_model="mini")


@pytest.mark.parametrize("method", ["basic", "ai", "auto"])
def test_anonymous_requests_are_always_basic(selector: TierSelector, method: str) -> None:
    decision = selector.select(
        is_registered_user=False,
        requested_method=method,
        provider="anthropic",
        model="sonnet",
        has_page_images=True,
    )
    assert decision.strategy == "basic"
    assert decision.provider is None and decision.model is None


def test_registered_auto_with_images_and_vision_model_selects_vision(selector: TierSelector) -> None:
    decision = selector.select(
        is_registered_user=True,
        requested_method="auto",
        provider="anthropic",
        model="sonnet",
        has_page_images=True,
    )
    assert decision.strategy == "vision"
    assert (decision.provider, decision.model) == ("anthropic", "sonnet")


def test_text_only_model_falls_back_to_text(selector: TierSelector) -> None:
    decision = selector.select(
        is_registered_user=True,
        requested_method="ai",
        provider="openai",
        model="nano",
        has_page_images=True,
    )
    assert decision.strategy == "text"


def test_no_images_selects_text(selector: TierSelector) -> None:
    decision = selector.select(
        is_registered_user=True,
        requested_method="auto",
        provider=None,
        model=None,
        has_page_images=False,
    )
    assert decision.strategy == "text"
    assert (decision.provider, decision.model) == ("openai", "mini")


def test_explicit_basic_and_unknown_method_select_basic(selector: TierSelector) -> None:
    for method in ("basic", "turbo"):
        decision = selector.select(
            is_registered_user=True,
            requested_method=method,
            provider="openai",
            model="mini",
            has_page_images=True,
        )
        assert decision.strategy == "basic"


def test_mismatched_provider_and_model_fail_closed(selector: TierSelector) -> None:
    decision = selector.select(
        is_registered_user=True,
        requested_method="ai",
        provider="openai",
        model="opus",
        has_page_images=False,
    )
    assert decision.strategy == "basic"


def test_needs_page_images_matches_vision_decision(selector: TierSelector) -> None:
    assert selector.needs_page_images(is_registered_user=True, requested_method="auto", provider="openai", model="mini")
    assert not selector.needs_page_images(is_registered_user=True, requested_method="auto", provider="openai", model="nano")
    assert not selector.needs_page_images(is_registered_user=False, requested_method="ai", provider="openai", model="mini")


def test_resolve_provider_model_fills_missing_half() -> None:
    assert resolve_provider_model(None, "opus", default_provider="openai", default_model="mini") == (
        "anthropic",
        "opus",
    )
    assert resolve_provider_model("anthropic", None, default_provider="openai", default_model="mini") == (
        "anthropic",
        "sonnet",
    )
    assert resolve_provider_model(None, "bogus", default_provider="openai", default_model="mini") == (None, "bogus")
