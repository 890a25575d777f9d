"""Shared value types for price discovery."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class PromptAttempt:
    """One prompt sent to the text-generation service."""

    prompt: str
    max_output_tokens: int
    strategy: str  # Diagnostic label only


@dataclass(frozen=True)
class PriceSearchResult:
    """Result of searching for a product's lowest price.

    ``success`` is True iff a usable price was extracted. Never persisted.
    """

    lowest_price: Decimal | None
    platform: str | None
    deep_link: str | None
    success: bool
    strategy: str | None = None

    @classmethod
    def failed(cls, strategy: str | None = None) -> PriceSearchResult:
        return cls(
            lowest_price=None,
            platform=None,
            deep_link=None,
            success=False,
            strategy=strategy,
        )


__all__ = ["PriceSearchResult", "PromptAttempt"]
