"""Convenience exports for PlanPilot generation clients."""

from .llm_client import (
    DEFAULT_MODELS,
    DEFAULT_PROVIDER,
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
    normalise_provider,
)
from .proxy import ProxyClient

__all__ = [
    "DEFAULT_MODELS",
    "DEFAULT_PROVIDER",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "ProxyClient",
    "normalise_provider",
]
