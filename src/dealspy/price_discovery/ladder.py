"""Cascading prompt ladder for price discovery."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from dealspy.core.protocols.text_generation import ITextGenerator
from dealspy.price_discovery.parser import DEFAULT_PRICE_BAND, PriceBand
from dealspy.price_discovery.prompts import PromptStrategy, default_strategies
from dealspy.price_discovery.result import PriceSearchResult

logger = logging.getLogger(__name__)


class PromptLadder:
    """Try strategies in order until one yields a parseable price.

    Stops at the first success. A strategy that does not apply to the name,
    or whose prompt repeats one already sent for this product, is skipped
    without calling the service.
    """

    def __init__(
        self,
        client: ITextGenerator,
        strategies: Sequence[PromptStrategy] | None = None,
        band: PriceBand = DEFAULT_PRICE_BAND,
    ) -> None:
        self.client = client
        self.strategies: list[PromptStrategy] = (
            list(strategies) if strategies is not None else default_strategies()
        )
        self.band = band

    async def search(self, product_name: str) -> PriceSearchResult:
        """Return the first successful result, or a failed one if all steps fail."""
        sent: set[str] = set()

        for step, strategy in enumerate(self.strategies, start=1):
            attempt = strategy.build(product_name)
            if attempt is None:
                logger.debug(
                    f"Skipping {strategy.label}: not applicable",
                    extra={"product": product_name},
                )
                continue
            if attempt.prompt in sent:
                logger.debug(
                    f"Skipping {strategy.label}: duplicate prompt",
                    extra={"product": product_name},
                )
                continue
            sent.add(attempt.prompt)

            logger.debug(
                f"Trying {strategy.label} (step {step}/{len(self.strategies)})",
                extra={"product": product_name, "max_output_tokens": attempt.max_output_tokens},
            )
            result = await strategy.execute(attempt, self.client, self.band)

            if result.success:
                logger.info(
                    f"Price found with {strategy.label}",
                    extra={
                        "product": product_name,
                        "price": str(result.lowest_price),
                        "platform": result.platform,
                    },
                )
                return result

            logger.debug(f"{strategy.label} gave no usable price, trying next strategy")

        logger.warning(
            "All prompt strategies failed",
            extra={"product": product_name, "attempts": len(sent)},
        )
        return PriceSearchResult.failed()


__all__ = ["PromptLadder"]
