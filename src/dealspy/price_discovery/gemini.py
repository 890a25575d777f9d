"""Async client for the Gemini text-generation API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from dealspy.core.config import Settings
from dealspy.core.errors import ConfigurationError, TextGenerationError
from dealspy.core.protocols.text_generation import FinishReason, GenerationResult

logger = logging.getLogger(__name__)

SAFETY_FINISH_REASONS = frozenset({"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"})

SAFETY_SETTINGS: list[dict[str, str]] = [
    {"category": category, "threshold": "BLOCK_ONLY_HIGH"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


@dataclass
class GeminiConfig:
    """Configuration for the Gemini client."""

    api_url: str
    api_key: str
    timeout_seconds: float = 30.0
    max_retries: int = 2
    base_delay_seconds: float = 1.0
    temperature: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings) -> GeminiConfig:
        if not settings.gemini_api_key:
            raise ConfigurationError("DEALSPY_GEMINI_API_KEY is not set")
        return cls(
            api_url=str(settings.gemini_api_url),
            api_key=settings.gemini_api_key,
            timeout_seconds=settings.gemini_timeout,
            max_retries=settings.gemini_max_retries,
            base_delay_seconds=settings.gemini_retry_base_delay,
        )


def parse_envelope(data: dict[str, Any]) -> GenerationResult:
    """Map a ``generateContent`` response body to a GenerationResult."""
    candidates = data.get("candidates") or []
    if not candidates:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            return GenerationResult(text="", finish_reason=FinishReason.SAFETY)
        return GenerationResult(text="", finish_reason=FinishReason.OTHER)

    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()

    raw_reason = str(candidate.get("finishReason") or "STOP").upper()
    if raw_reason in SAFETY_FINISH_REASONS:
        finish_reason = FinishReason.SAFETY
    elif raw_reason == "MAX_TOKENS":
        finish_reason = FinishReason.MAX_TOKENS
    elif raw_reason == "STOP":
        finish_reason = FinishReason.STOP
    else:
        finish_reason = FinishReason.OTHER

    return GenerationResult(text=text, finish_reason=finish_reason)


class GeminiClient:
    """Gemini ``generateContent`` adapter.

    Implements the ITextGenerator protocol with:
    - Exponential backoff retry on rate limits, server errors and network errors
    - Connection pooling via a shared httpx client
    - Immediate failure on other client errors
    """

    def __init__(
        self, config: GeminiConfig, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": "DealSpy-PriceSearch/1.0",
                },
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _build_payload(self, prompt: str, max_output_tokens: int) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._config.temperature,
                "topK": 1,
                "topP": 0.8,
                "maxOutputTokens": max_output_tokens,
                "candidateCount": 1,
            },
            "safetySettings": SAFETY_SETTINGS,
        }

    async def _backoff(self, attempt: int) -> None:
        await asyncio.sleep(self._config.base_delay_seconds * (2**attempt))

    async def generate(self, prompt: str, max_output_tokens: int) -> GenerationResult:
        """Generate text for a prompt.

        Raises:
            TextGenerationError: When retries are exhausted, on a non-retryable
                status, or when the response body is not valid JSON.
        """
        payload = self._build_payload(prompt, max_output_tokens)
        attempts = self._config.max_retries + 1
        last_error: str | None = None
        last_status: int | None = None

        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            try:
                client = await self._get_client()
                response = await client.post(
                    self._config.api_url,
                    params={"key": self._config.api_key},
                    json=payload,
                )
            except httpx.TimeoutException:
                last_error, last_status = "Request timed out", None
                logger.warning(last_error, extra={"attempt": attempt + 1})
                if not is_last:
                    await self._backoff(attempt)
                continue
            except httpx.RequestError as e:
                last_error, last_status = f"Request error: {e}", None
                logger.warning(last_error, extra={"attempt": attempt + 1})
                if not is_last:
                    await self._backoff(attempt)
                continue

            if response.status_code == 200:
                try:
                    data = response.json()
                except ValueError as e:
                    raise TextGenerationError(
                        "Malformed response body", status_code=response.status_code
                    ) from e
                if not isinstance(data, dict):
                    raise TextGenerationError(
                        "Unexpected response envelope", status_code=response.status_code
                    )
                return parse_envelope(data)

            last_status = response.status_code
            last_error = f"HTTP {response.status_code}: {response.text[:200]}"

            # Rate limited - wait and retry
            if response.status_code == 429:
                retry_after = _retry_after_seconds(response, self._config.base_delay_seconds)
                logger.warning(
                    f"Rate limited, waiting {retry_after}s before retry",
                    extra={"attempt": attempt + 1},
                )
                if not is_last:
                    await asyncio.sleep(retry_after)
                continue

            # Server error - retry with backoff
            if response.status_code >= 500:
                logger.warning(last_error, extra={"attempt": attempt + 1})
                if not is_last:
                    await self._backoff(attempt)
                continue

            # Client error - do not retry
            logger.error(f"Text generation rejected: {last_error}")
            raise TextGenerationError(last_error, status_code=response.status_code)

        logger.error(
            f"Text generation failed after {attempts} attempts",
            extra={"last_error": last_error},
        )
        raise TextGenerationError(last_error or "Max retries exceeded", status_code=last_status)


def _retry_after_seconds(response: httpx.Response, default: float) -> float:
    try:
        return float(response.headers.get("Retry-After", default))
    except ValueError:
        return default


__all__ = ["GeminiClient", "GeminiConfig", "parse_envelope"]
