"""Client base class shared by all plan-generation integrations."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from ..memory.schema import Turn

__all__ = [
    "DEFAULT_MODELS",
    "DEFAULT_PROVIDER",
    "PROVIDERS",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "normalise_provider",
]

DEFAULT_PROVIDER = "gemini"
DEFAULT_MODELS: Dict[str, str] = {
    "gemini": "gemini-2.0-flash",
    "openai": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-20240620",
}
PROVIDERS = frozenset(DEFAULT_MODELS)


def normalise_provider(value: Any) -> str:
    """Lower-case ``value`` and fall back to the default provider when unknown."""
    candidate = str(value or "").strip().lower()
    return candidate if candidate in PROVIDERS else DEFAULT_PROVIDER


class LLMClientError(RuntimeError):
    """Base error raised for plan-generation client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the service answers without usable output text."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries."""


@dataclass(slots=True)
class LLMRequest:
    """Chat-style request: system instructions, prior turns, and the new message."""

    prompt: str
    system_prompt: Optional[str] = None
    history: Sequence[Turn] = ()
    provider: str = DEFAULT_PROVIDER
    model: Optional[str] = None
    temperature: float = 0.2
    metadata: Dict[str, Any] = field(default_factory=dict)
    response_mime_type: Optional[str] = "application/json"
    max_attempts: Optional[int] = None

    def messages(self) -> list[Dict[str, str]]:
        """Render neutral chat messages; stored ``model`` turns become ``assistant``."""
        messages: list[Dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        for turn in self.history:
            role = "assistant" if turn.role == "model" else "user"
            messages.append({"role": role, "content": str(turn.text or "")})
        messages.append({"role": "user", "content": self.prompt})
        return messages

    def to_payload(self, default_model: Optional[str] = None) -> Dict[str, Any]:
        """Render the body accepted by the generation proxy."""
        provider = normalise_provider(self.provider)
        payload: Dict[str, Any] = {
            "provider": provider,
            "model": self.model or default_model or DEFAULT_MODELS[provider],
            "temperature": self.temperature,
            "messages": self.messages(),
        }
        if self.response_mime_type:
            payload["response_mime_type"] = self.response_mime_type
        if self.metadata:
            max_metadata_len = 512
            serialised_metadata: Dict[str, Any] = {}
            for key, value in self.metadata.items():
                formatted: str
                if isinstance(value, str):
                    formatted = value
                else:
                    formatted = json.dumps(value, separators=(",", ":"), sort_keys=True)
                if len(formatted) > max_metadata_len:
                    formatted = f"{formatted[: max_metadata_len - 3]}..."
                serialised_metadata[key] = formatted
            payload["metadata"] = serialised_metadata
        return payload


class LLMClient:
    """High-level helper that retries transient failures and returns raw text."""

    def __init__(self, model: Optional[str] = None, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def model(self) -> Optional[str]:
        """Return the default model name configured for this client."""
        return self._model

    def complete(self, request: LLMRequest) -> str:
        """Invoke the model and return its output text."""
        attempts = request.max_attempts or self._max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            payload = request.to_payload(self._model)
            try:
                raw = self._raw_invoke(payload)
                if not raw or not raw.strip():
                    raise LLMResponseFormatError("Model returned an empty response.")
                return raw
            except (LLMTransportError, LLMResponseFormatError) as error:
                last_error = error
                if attempt >= attempts:
                    break
                time.sleep(self._retry_delay)

        if attempts == 1 and last_error is not None:
            raise last_error
        error_message = (
            f"Failed to obtain a response after {attempts} attempt(s) for provider "
            f"{normalise_provider(request.provider)}: {last_error}"
        )
        raise LLMRetryError(error_message) from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
