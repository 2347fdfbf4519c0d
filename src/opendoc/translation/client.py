"""Async client for OpenAI-compatible chat-completions APIs."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from opendoc.config.models import LLMSettings

LOGGER = logging.getLogger(__name__)

_CONNECTION_TEST_MESSAGE = "Hello, this is a test message."


class TranslationBackendError(Exception):
    """Base class for failures reported by the translation backend."""


class TranslationTimeoutError(TranslationBackendError):
    """Raised when a completion request exceeds the configured timeout."""


class TranslationHTTPError(TranslationBackendError):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code


class TranslationResponseError(TranslationBackendError):
    """Raised when a 2xx response carries no usable completion."""


class ChatCompletionClient:
    """Send translation prompts to a chat-completions endpoint.

    The client owns an ``httpx.AsyncClient`` unless one is injected, in which
    case the caller remains responsible for closing it.
    """

    def __init__(
        self,
        settings: LLMSettings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialise the client.

        Args:
            settings: Backend URL, credentials, and sampling options.
            http_client: Optional pre-configured transport, mainly for tests.
        """
        self._settings = settings
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.timeout_seconds)
        )

    @property
    def settings(self) -> LLMSettings:
        return self._settings

    async def __aenter__(self) -> ChatCompletionClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def translate(self, system_prompt: str, text: str) -> str:
        """Return ``text`` translated according to ``system_prompt``.

        Raises:
            TranslationTimeoutError: If the request timed out.
            TranslationHTTPError: If the API returned a non-2xx status.
            TranslationResponseError: If the completion was missing or empty.
            TranslationBackendError: For other transport failures.
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": text},
        ]
        return await self.complete(messages)

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        payload = {
            "model": self._settings.model,
            "messages": messages,
            "temperature": self._settings.temperature if temperature is None else temperature,
            "max_tokens": self._settings.max_tokens if max_tokens is None else max_tokens,
        }
        data = await self._request("POST", "/chat/completions", json=payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise TranslationResponseError(f"Malformed completion payload: {exc!r}") from exc
        if not isinstance(content, str) or not content.strip():
            raise TranslationResponseError("Completion contained no text.")
        return content

    async def test_connection(self) -> bool:
        """Return True when a minimal completion request succeeds."""
        try:
            await self.complete(
                [{"role": "user", "content": _CONNECTION_TEST_MESSAGE}],
                max_tokens=10,
                temperature=0.1,
            )
        except TranslationBackendError as exc:
            LOGGER.warning("LLM connection test failed: %s", exc)
            return False
        return True

    async def list_models(self) -> list[str]:
        """Return model identifiers advertised by the ``/models`` endpoint."""
        data = await self._request("GET", "/models")
        models = data.get("data") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        return [item["id"] for item in models if isinstance(item, dict) and "id" in item]

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        url = self._settings.base_url.rstrip("/") + endpoint
        headers = {"Content-Type": "application/json"}
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"

        try:
            response = await self._http.request(
                method,
                url,
                headers=headers,
                timeout=self._settings.timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as exc:
            raise TranslationTimeoutError(
                f"Request to {url} timed out after {self._settings.timeout_seconds}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise TranslationBackendError(f"Request to {url} failed: {exc}") from exc

        if not response.is_success:
            raise TranslationHTTPError(response.status_code, response.text[:500])
        try:
            return response.json()
        except ValueError as exc:
            raise TranslationResponseError(f"Response from {url} is not JSON") from exc


__all__ = [
    "ChatCompletionClient",
    "TranslationBackendError",
    "TranslationHTTPError",
    "TranslationResponseError",
    "TranslationTimeoutError",
]
