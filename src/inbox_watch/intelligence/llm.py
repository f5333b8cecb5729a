"""Sampling client backed by a local Ollama server."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from urllib.parse import urljoin

import httpx

from inbox_watch.core.config import LlmSettings
from inbox_watch.core.interfaces import (
    ModelPreferences,
    SamplingError,
    SamplingMessage,
    SamplingResult,
)

MAX_ATTEMPTS = 3


class OllamaSamplingClient:
    """Async client for the Ollama chat API implementing the sampling call."""

    def __init__(
        self, settings: LlmSettings, *, client: httpx.AsyncClient | None = None
    ) -> None:
        """Bind the client to settings; an external ``client`` is not closed."""
        self.settings = settings
        self._client = client

    @property
    def provider_id(self) -> str:
        """Return a human readable identifier for the configured model."""
        return f"ollama:{self.settings.model}"

    async def create_message(
        self,
        messages: Sequence[SamplingMessage],
        *,
        max_tokens: int,
        model_preferences: ModelPreferences | None = None,
    ) -> SamplingResult:
        """Send ``messages`` to the chat endpoint and return the reply text."""
        # Ollama serves one configured model, so selection hints are not forwarded.
        del model_preferences
        endpoint = _resolve_endpoint(self.settings.base_url)
        num_predict = max_tokens
        if self.settings.max_output_tokens is not None:
            num_predict = min(max_tokens, self.settings.max_output_tokens)
        payload: dict[str, object] = {
            "model": self.settings.model,
            "messages": [
                {"role": message.role, "content": message.text} for message in messages
            ],
            "stream": False,
            "options": {
                "temperature": self.settings.temperature,
                "num_predict": num_predict,
            },
        }

        client = self._client or httpx.AsyncClient()
        data: dict[str, object] | None = None
        last_error: Exception | None = None
        try:
            for attempt in range(1, MAX_ATTEMPTS + 1):
                try:
                    response = await client.post(
                        endpoint,
                        json=payload,
                        timeout=self.settings.timeout_seconds,
                    )
                    response.raise_for_status()
                    data = response.json()
                    break
                except httpx.HTTPError as exc:  # pragma: no cover - network dependent
                    last_error = exc
                except json.JSONDecodeError as exc:
                    raise SamplingError("LLM returned invalid JSON") from exc

                if attempt < MAX_ATTEMPTS:
                    await asyncio.sleep(min(2**attempt, 8))
        finally:
            if self._client is None:
                await client.aclose()

        if data is None:
            raise SamplingError("LLM request failed after retries") from last_error

        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise SamplingError("LLM response missing 'message.content' field")
        model = data.get("model")
        return SamplingResult(
            model=model if isinstance(model, str) else self.settings.model,
            text=content,
        )


def _resolve_endpoint(base_url: str) -> str:
    trimmed = base_url.rstrip("/") + "/"
    return urljoin(trimmed, "api/chat")


__all__ = ["OllamaSamplingClient", "SamplingError"]
