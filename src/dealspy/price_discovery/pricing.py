"""Price-drop detection.

Per-product states::

    UNKNOWN --first observation--> STABLE
    STABLE  --price below previous current price--> DROPPED (notify)
    DROPPED --price not below previous current price--> STABLE
    any     --failed search--> unchanged

A drop is judged against the price stored immediately before the update,
not against the all-time low.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from dealspy.price_discovery.models import PriceState, Product
from dealspy.price_discovery.result import PriceSearchResult


@dataclass(frozen=True)
class PriceChange:
    """What an observation did to a product."""

    previous_price: Decimal | None
    new_price: Decimal
    state: PriceState

    @property
    def dropped(self) -> bool:
        return self.state is PriceState.DROPPED


def next_state(previous_price: Decimal | None, new_price: Decimal) -> PriceState:
    if previous_price is None:
        return PriceState.STABLE
    return PriceState.DROPPED if new_price < previous_price else PriceState.STABLE


def apply_price(product: Product, new_price: Decimal) -> PriceChange:
    """Record an observed price on ``product`` and classify the change."""
    previous = product.current_price
    state = next_state(previous, new_price)

    if previous is None:
        product.last_lowest_price = new_price
    elif state is PriceState.DROPPED and (
        product.last_lowest_price is None or new_price < product.last_lowest_price
    ):
        product.last_lowest_price = new_price

    product.current_price = new_price
    product.price_state = state
    product.last_checked_at = datetime.now(UTC).replace(tzinfo=None)
    return PriceChange(previous_price=previous, new_price=new_price, state=state)


def apply_search_result(product: Product, result: PriceSearchResult) -> PriceChange:
    """Apply a successful search result, keeping a known deep link on None."""
    if not result.success or result.lowest_price is None:
        raise ValueError("Only successful search results can be applied")

    change = apply_price(product, result.lowest_price)
    if result.deep_link is not None:
        product.deep_link = result.deep_link
    product.platform = result.platform
    return change


__all__ = ["PriceChange", "apply_price", "apply_search_result", "next_state"]
