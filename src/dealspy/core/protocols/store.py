"""Protocol for product and watchlist persistence."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dealspy.price_discovery.models import Product, User


@runtime_checkable
class IProductStore(Protocol):
    """Abstract interface for the persistence collaborator.

    Single-row reads and writes are expected to be strongly consistent.
    """

    async def list_product_ids(self) -> list[int]:
        """Return the ids of every product in the catalog."""
        ...

    async def get_product(self, product_id: int) -> Product | None:
        """Return a product by id, or None."""
        ...

    async def find_product_by_name(self, name: str) -> Product | None:
        """Return a product by its canonical name, or None."""
        ...

    async def get_or_create_product(self, name: str) -> Product:
        """Return the named product, creating an unpriced one if needed."""
        ...

    async def save(self, product: Product) -> Product:
        """Persist a product in one atomic write.

        Raises:
            PersistenceError: If the write failed and was rolled back.
        """
        ...

    async def find_watchers_by_product_id(
        self, product_id: int, today: date | None = None
    ) -> list[User]:
        """Return the users currently watching a product."""
        ...


__all__ = ["IProductStore"]
