"""Plan generation on top of an :class:`~planpilot.models.LLMClient`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from ..memory.schema import Turn
from ..models.llm_client import (
    DEFAULT_MODELS,
    DEFAULT_PROVIDER,
    LLMClient,
    LLMClientError,
    LLMRequest,
    normalise_provider,
)
from ..prompts import InstructionProfile, render_repair_request, system_prompt_for
from .coerce import coerce_plan
from .schema import Plan

__all__ = ["GenerationSettings", "PlanGenerator"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class GenerationSettings:
    """Provider selection for generation requests."""

    provider: str = DEFAULT_PROVIDER
    model: str = ""
    temperature: float = 0.2
    fallback_provider: str = DEFAULT_PROVIDER

    def resolved_model(self) -> str:
        return self.model.strip() or DEFAULT_MODELS[normalise_provider(self.provider)]

    @classmethod
    def from_config(cls, config: dict) -> "GenerationSettings":
        models = config.get("models") or {}
        temperature = models.get("temperature", 0.2)
        return cls(
            provider=normalise_provider(models.get("provider")),
            model=str(models.get("model") or ""),
            temperature=float(temperature) if isinstance(temperature, (int, float)) else 0.2,
        )


class PlanGenerator:
    """Request plans through the planning and repair instruction profiles."""

    def __init__(self, client: LLMClient, settings: GenerationSettings | None = None) -> None:
        self._client = client
        self._settings = settings or GenerationSettings()

    @property
    def settings(self) -> GenerationSettings:
        return self._settings

    def generate(self, request_text: str, history: Sequence[Turn] = ()) -> Plan:
        """Turn a natural-language request into a plan."""
        return self._invoke(InstructionProfile.PLANNING, request_text, history)

    def generate_repair(self, failure_brief: str, context_brief: str, history: Sequence[Turn] = ()) -> Plan:
        """Ask for a minimal plan that addresses ``failure_brief``."""
        prompt = render_repair_request(failure_brief, context_brief)
        return self._invoke(InstructionProfile.REPAIR, prompt, history)

    def _invoke(self, profile: InstructionProfile, prompt: str, history: Sequence[Turn]) -> Plan:
        settings = self._settings
        provider = normalise_provider(settings.provider)
        request = LLMRequest(
            prompt=prompt,
            system_prompt=system_prompt_for(profile),
            history=tuple(history),
            provider=provider,
            model=settings.resolved_model(),
            temperature=settings.temperature,
            metadata={"profile": profile.value},
        )
        try:
            raw = self._client.complete(request)
        except LLMClientError as error:
            fallback = normalise_provider(settings.fallback_provider)
            if provider == fallback:
                raise
            LOGGER.warning("Provider %s failed (%s); retrying with %s.", provider, error, fallback)
            request.provider = fallback
            request.model = DEFAULT_MODELS[fallback]
            try:
                raw = self._client.complete(request)
            except LLMClientError:
                raise error
        return coerce_plan(raw)
