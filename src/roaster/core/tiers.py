from __future__ import annotations

from dataclasses import dataclass

from roaster.llm.catalog import DEFAULT_MODEL_FOR_PROVIDER, MODEL_CATALOG, is_known_pair, is_vision_capable
from roaster.types import TierDecision

_BASIC = TierDecision(strategy="basic")


def resolve_provider_model(
    provider: str | None,
    model: str | None,
    *,
    default_provider: str,
    default_model: str,
) -> tuple[str | None, str | None]:
    if provider is None and model is None:
        return default_provider, default_model
    if provider is None:
        spec = MODEL_CATALOG.get(model or "")
        return (spec.provider if spec else None), model
    if model is None:
        return provider, DEFAULT_MODEL_FOR_PROVIDER.get(provider)
    return provider, model


@dataclass(slots=True)
class TierSelector:
    default_provider: str = "openai"
    default_model: str = "mini"

    def resolve(self, provider: str | None, model: str | None) -> tuple[str | None, str | None]:
        return resolve_provider_model(
            provider,
            model,
            default_provider=self.default_provider,
            default_model=self.default_model,
        )

    def needs_page_images(
        self,
        *,
        is_registered_user: bool,
        requested_method: str,
        provider: str | None,
        model: str | None,
    ) -> bool:
        decision = self.select(
            is_registered_user=is_registered_user,
            requested_method=requested_method,
            provider=provider,
            model=model,
            has_page_images=True,
        )
        return decision.strategy == "vision"

    def select(
        self,
        *,
        is_registered_user: bool,
        requested_method: str,
        provider: str | None,
        model: str | None,
        has_page_images: bool,
    ) -> TierDecision:
        if not is_registered_user:
            return _BASIC
        if requested_method == "basic":
            return _BASIC
        if requested_method not in {"ai", "auto"}:
            return _BASIC

        provider, model = self.resolve(provider, model)
        if not is_known_pair(provider, model):
            return _BASIC

        if has_page_images and is_vision_capable(model):
            return TierDecision(strategy="vision", provider=provider, model=model)
        return TierDecision(strategy="text", provider=provider, model=model)
