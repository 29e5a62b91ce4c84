"""HTTP client for the plan-generation proxy."""

from __future__ import annotations

import json
import os
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["ProxyClient", "ProxyResponse"]

PROXY_URL_ENV = "PLANPILOT_PROXY_URL"

ProxyResponse = tuple[int, str]
Transport = Callable[[Dict[str, Any]], ProxyResponse]


class ProxyClient(LLMClient):
    """Thin adapter around the proxy that fronts the model providers.

    The proxy accepts ``{provider, model, temperature, messages}`` and answers
    ``{"output": "<model text>"}``.
    """

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
        max_attempts: int = 1,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._url = (url or os.getenv(PROXY_URL_ENV) or "").strip()
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._url:
            raise ValueError(f"Missing proxy URL. Set models.proxy_url or {PROXY_URL_ENV}.")

    @property
    def url(self) -> str:
        return self._url

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        try:
            status, body = self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:  # pragma: no cover
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        if status >= 400:
            raise LLMTransportError(f"Proxy error {status}: {body[:1000]}")

        try:
            data = json.loads(body)
        except json.JSONDecodeError as error:
            raise LLMResponseFormatError(f"Proxy returned invalid JSON: {body[:200]}") from error

        output = data.get("output") if isinstance(data, dict) else None
        if not isinstance(output, str) or not output.strip():
            raise LLMResponseFormatError("Empty output from proxy.")
        return output

    def _http_transport(self, payload: Dict[str, Any]) -> ProxyResponse:
        """Default transport: POST the payload as JSON."""
        import urllib.error
        import urllib.request

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Proxy request timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            return error.code, message
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach proxy: {error.reason}") from error

        return status, raw.decode("utf-8")
