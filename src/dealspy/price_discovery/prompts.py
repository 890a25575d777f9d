"""Prompt strategies for price discovery.

Each strategy turns a product name into one prompt with its own token budget.
Strategies are ordered from most informative to most terse; budgets never grow
along the ladder because a failed call still costs tokens.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

from dealspy.core.errors import TextGenerationError
from dealspy.core.protocols.text_generation import FinishReason, ITextGenerator
from dealspy.price_discovery.parser import DEFAULT_PRICE_BAND, PriceBand, parse_response
from dealspy.price_discovery.result import PriceSearchResult, PromptAttempt

logger = logging.getLogger(__name__)

TARGET_RETAILERS: tuple[str, ...] = (
    "Flipkart",
    "Amazon",
    "Myntra",
    "Nykaa",
    "Ajio",
    "Blinkit",
    "Mamaearth",
    "Shopsy",
)

STOP_WORDS = frozenset({"with", "and", "for", "the", "in", "on", "at", "of", "by", "from"})
MAX_CLEANED_LENGTH = 40

_NON_ALNUM = re.compile(r"[^A-Za-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def clean_product_name(name: str, max_length: int | None = None) -> str:
    """Drop stop words and punctuation, optionally cut at a word boundary."""
    text = _NON_ALNUM.sub(" ", name)
    words = [word for word in _WHITESPACE.split(text) if word and word.lower() not in STOP_WORDS]
    cleaned = " ".join(words)

    if max_length is not None and len(cleaned) > max_length:
        cut = cleaned[:max_length]
        if cleaned[max_length] != " " and " " in cut:
            cut = cut.rsplit(" ", 1)[0]
        cleaned = cut.strip()
    return cleaned


class PromptStrategy:
    """Base strategy: build one prompt, send it, parse the answer.

    Subclasses only decide the wording by overriding :meth:`build_prompt`.
    """

    label: str = "base"
    max_output_tokens: int = 400

    def __init__(self, currency_symbol: str = "₹") -> None:
        self.currency_symbol = currency_symbol

    def build_prompt(self, product_name: str) -> str | None:
        raise NotImplementedError

    def build(self, product_name: str) -> PromptAttempt | None:
        """Return the attempt for a product, or None if the strategy does not apply."""
        prompt = self.build_prompt(product_name)
        if not prompt or not prompt.strip():
            return None
        return PromptAttempt(
            prompt=prompt.strip(),
            max_output_tokens=self.max_output_tokens,
            strategy=self.label,
        )

    async def execute(
        self,
        attempt: PromptAttempt,
        client: ITextGenerator,
        band: PriceBand = DEFAULT_PRICE_BAND,
    ) -> PriceSearchResult:
        """Send an attempt and parse whatever comes back.

        Transport errors and safety blocks end the attempt as a failure.
        Truncated output is still parsed since the price usually comes first.
        """
        try:
            generation = await client.generate(attempt.prompt, attempt.max_output_tokens)
        except TextGenerationError as e:
            logger.warning(
                "Text generation failed: %s",
                e,
                extra={"strategy": attempt.strategy, "status_code": e.status_code},
            )
            return PriceSearchResult.failed(attempt.strategy)

        if generation.finish_reason is FinishReason.SAFETY:
            logger.warning("Prompt blocked by safety filter", extra={"strategy": attempt.strategy})
            return PriceSearchResult.failed(attempt.strategy)

        if not generation.text or not generation.text.strip():
            logger.info("Empty response", extra={"strategy": attempt.strategy})
            return PriceSearchResult.failed(attempt.strategy)

        if generation.finish_reason is FinishReason.MAX_TOKENS:
            logger.debug("Parsing truncated response", extra={"strategy": attempt.strategy})

        return parse_response(generation.text, band, strategy=attempt.strategy)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(label={self.label!r}, tokens={self.max_output_tokens})>"


class StandardPrompt(PromptStrategy):
    """Full request naming the product and the target retailers."""

    label = "standard"
    max_output_tokens = 400

    def __init__(
        self, currency_symbol: str = "₹", retailers: Sequence[str] = TARGET_RETAILERS
    ) -> None:
        super().__init__(currency_symbol)
        self.retailers = tuple(retailers)

    def build_prompt(self, product_name: str) -> str | None:
        name = clean_product_name(product_name) or product_name.strip()
        if not name:
            return None
        return (
            f"Find the lowest current price of {name} available online in India on "
            f"{', '.join(self.retailers)}. Reply with the price in {self.currency_symbol}, "
            f"the platform name and a direct buy link."
        )


class MinimalPrompt(PromptStrategy):
    """Product name plus currency symbol."""

    label = "minimal"
    max_output_tokens = 200

    def build_prompt(self, product_name: str) -> str | None:
        name = _WHITESPACE.sub(" ", product_name).strip()
        if not name:
            return None
        return f"{name} price {self.currency_symbol}"


class CleanedPrompt(PromptStrategy):
    """Stop-word free name capped at 40 characters, plus currency symbol."""

    label = "cleaned"
    max_output_tokens = 150

    def build_prompt(self, product_name: str) -> str | None:
        name = clean_product_name(product_name, MAX_CLEANED_LENGTH)
        if not name:
            return None
        return f"{name} {self.currency_symbol}"


class BrandTypePrompt(PromptStrategy):
    """Brand (first word) and product type (last word) only."""

    label = "brand_type"
    max_output_tokens = 120

    def build_prompt(self, product_name: str) -> str | None:
        words = clean_product_name(product_name).split()
        if len(words) < 3:
            return None
        return f"{words[0]} {words[-1]} price {self.currency_symbol}"


class FirstWordsPrompt(PromptStrategy):
    """First few words of the cleaned name."""

    label = "first_words"
    max_output_tokens = 100

    def __init__(self, currency_symbol: str = "₹", word_count: int = 3) -> None:
        super().__init__(currency_symbol)
        self.word_count = word_count

    def build_prompt(self, product_name: str) -> str | None:
        words = clean_product_name(product_name).split()
        if not words:
            return None
        return f"{' '.join(words[: self.word_count])} price {self.currency_symbol}"


class DistinctiveWordPrompt(PromptStrategy):
    """Single most distinctive word: a model number if any, else the longest word."""

    label = "distinctive_word"
    max_output_tokens = 80

    def build_prompt(self, product_name: str) -> str | None:
        word = most_distinctive_word(product_name)
        if not word:
            return None
        return f"{word} price {self.currency_symbol}"


def most_distinctive_word(product_name: str) -> str | None:
    words = clean_product_name(product_name).split()
    if not words:
        return None
    model_numbers = [
        w for w in words if any(c.isdigit() for c in w) and any(c.isalpha() for c in w)
    ]
    candidates = model_numbers or words
    return max(candidates, key=len)


STRATEGY_TYPES: dict[str, type[PromptStrategy]] = {
    cls.label: cls
    for cls in (
        StandardPrompt,
        MinimalPrompt,
        CleanedPrompt,
        BrandTypePrompt,
        FirstWordsPrompt,
        DistinctiveWordPrompt,
    )
}


def build_strategies(labels: Iterable[str], currency_symbol: str = "₹") -> list[PromptStrategy]:
    """Instantiate strategies by label, preserving order."""
    strategies: list[PromptStrategy] = []
    for label in labels:
        try:
            strategy_type = STRATEGY_TYPES[label]
        except KeyError as e:
            raise ValueError(f"Unknown prompt strategy: {label}") from e
        strategies.append(strategy_type(currency_symbol=currency_symbol))
    return strategies


def default_strategies(currency_symbol: str = "₹") -> list[PromptStrategy]:
    return build_strategies(STRATEGY_TYPES, currency_symbol)


__all__ = [
    "BrandTypePrompt",
    "CleanedPrompt",
    "DistinctiveWordPrompt",
    "FirstWordsPrompt",
    "MinimalPrompt",
    "PromptStrategy",
    "STRATEGY_TYPES",
    "StandardPrompt",
    "build_strategies",
    "clean_product_name",
    "default_strategies",
    "most_distinctive_word",
]
