"""Protocol for the text-generation service."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class FinishReason(str, Enum):
    """Why the service stopped generating."""

    STOP = "STOP"
    MAX_TOKENS = "MAX_TOKENS"  # Truncated at the output-token cap
    SAFETY = "SAFETY"  # Blocked by moderation, text is unusable
    OTHER = "OTHER"


@dataclass(frozen=True)
class GenerationResult:
    """Response envelope of a single generation call."""

    text: str
    finish_reason: FinishReason

    @property
    def blocked(self) -> bool:
        return self.finish_reason is FinishReason.SAFETY

    @property
    def truncated(self) -> bool:
        return self.finish_reason is FinishReason.MAX_TOKENS


@runtime_checkable
class ITextGenerator(Protocol):
    """Abstract interface for a generative-text service."""

    async def generate(self, prompt: str, max_output_tokens: int) -> GenerationResult:
        """Generate a completion for a prompt.

        Args:
            prompt: Prompt text.
            max_output_tokens: Output-token cap for this request.

        Returns:
            GenerationResult with the generated text and finish reason.

        Raises:
            TextGenerationError: On network failure, non-2xx status or a
                malformed response envelope.
        """
        ...


__all__ = ["FinishReason", "GenerationResult", "ITextGenerator"]
