"""Remote LLM API backends over httpx."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from chatplane.backend.base import BackendError, RemoteApiSettings, require_output
from chatplane.backend.failure_classifier import classify_backend_failure
from chatplane.engine.models import FailureClass

logger = logging.getLogger(__name__)

ANTHROPIC_API_VERSION = "2023-06-01"
_CONNECT_TIMEOUT_SECONDS = 10.0
_PREVIEW_CHARS = 300


class HttpApiBackend(ABC):
    """Shared request/response handling for the remote API variants.

    One client is shared by every worker thread; ``httpx.Client`` is safe to
    use concurrently.
    """

    name = "http"
    credential_env = "API_KEY"

    def __init__(
        self,
        settings: RemoteApiSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._client = httpx.Client(
            base_url=settings.base_url.rstrip("/"),
            transport=transport,
        )

    def invoke(self, prompt: str, timeout_seconds: float) -> str:
        if not self.settings.api_key.strip():
            raise BackendError(
                FailureClass.CREDENTIAL_MISSING,
                f"{self.credential_env} is empty",
                reason_code=f"{self.name}_credential_missing",
            )

        path, headers, body = self._build_request(prompt)
        timeout = httpx.Timeout(
            timeout_seconds,
            connect=min(_CONNECT_TIMEOUT_SECONDS, timeout_seconds),
        )
        try:
            response = self._client.post(path, headers=headers, json=body, timeout=timeout)
        except httpx.TimeoutException as error:
            logger.warning("%s request timed out after %.1fs", self.name, timeout_seconds)
            raise BackendError(
                FailureClass.TIMEOUT,
                f"{self.name} request timed out after {timeout_seconds:g}s",
                reason_code=f"{self.name}_timeout",
            ) from error
        except httpx.HTTPError as error:
            classification = classify_backend_failure(backend=self.name, output=str(error))
            logger.warning("%s request failed: %s", self.name, error)
            raise BackendError(
                FailureClass.NETWORK_OR_PROCESS_FAILURE,
                f"{self.name} request failed: {error}",
                reason_code=classification.reason_code,
            ) from error

        if not response.is_success:
            classification = classify_backend_failure(
                backend=self.name,
                output=response.text,
                status_code=response.status_code,
            )
            logger.warning(
                "%s returned HTTP %d reason=%s",
                self.name,
                response.status_code,
                classification.reason_code,
            )
            raise BackendError(
                FailureClass.NETWORK_OR_PROCESS_FAILURE,
                (
                    f"{self.name} request failed with HTTP {response.status_code} "
                    f"({classification.hint}): {_preview(response.text)}"
                ),
                reason_code=classification.reason_code,
            )

        try:
            payload = response.json()
        except ValueError as error:
            raise BackendError(
                FailureClass.NETWORK_OR_PROCESS_FAILURE,
                f"{self.name} response is not valid JSON: {_preview(response.text)}",
                reason_code=f"{self.name}_invalid_response",
            ) from error

        text = self._extract_text(payload)
        if text is None:
            raise BackendError(
                FailureClass.EMPTY_RESPONSE,
                f"{self.name} response did not include text output",
                reason_code=f"{self.name}_empty_response",
            )
        return require_output(text, backend=self.name)

    @abstractmethod
    def _build_request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Return request path, headers and JSON body for one prompt."""

    @abstractmethod
    def _extract_text(self, payload: Any) -> str | None:
        """Return response text, or None when the payload carries none."""

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpApiBackend:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class OpenAiBackend(HttpApiBackend):
    """OpenAI Responses API."""

    name = "openai"
    credential_env = "OPENAI_API_KEY"

    def _build_request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        return (
            "/v1/responses",
            {"Authorization": f"Bearer {self.settings.api_key}"},
            {"model": self.settings.model, "input": prompt},
        )

    def _extract_text(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        output_text = payload.get("output_text")
        if isinstance(output_text, str):
            return output_text
        for item in _dict_items(payload.get("output")):
            for part in _dict_items(item.get("content")):
                if part.get("type") == "output_text" and isinstance(part.get("text"), str):
                    return part["text"]
        return None


class AnthropicBackend(HttpApiBackend):
    """Anthropic Messages API."""

    name = "anthropic"
    credential_env = "ANTHROPIC_API_KEY"

    def _build_request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any]]:
        return (
            "/v1/messages",
            {
                "x-api-key": self.settings.api_key,
                "anthropic-version": ANTHROPIC_API_VERSION,
            },
            {
                "model": self.settings.model,
                "max_tokens": self.settings.max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
        )

    def _extract_text(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        for part in _dict_items(payload.get("content")):
            if part.get("type") == "text" and isinstance(part.get("text"), str):
                return part["text"]
        return None


def _dict_items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _preview(text: str) -> str:
    collapsed = " ".join(text.split())
    if len(collapsed) <= _PREVIEW_CHARS:
        return collapsed
    return collapsed[: _PREVIEW_CHARS - 3] + "..."
