"""SQLAlchemy-backed product and watchlist store."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dealspy.core.errors import PersistenceError
from dealspy.price_discovery.models import Product, User, Watchlist

logger = logging.getLogger(__name__)


class SqlProductStore:
    """Persistence collaborator backed by an async session factory.

    Every call opens its own session; writes are one row per commit.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the store.

        Args:
            session_factory: SQLAlchemy async session factory.
        """
        self.session_factory = session_factory

    async def list_product_ids(self) -> list[int]:
        async with self.session_factory() as session:
            result = await session.execute(select(Product.pid).order_by(Product.pid))
            return list(result.scalars().all())

    async def get_product(self, product_id: int) -> Product | None:
        async with self.session_factory() as session:
            return await session.get(Product, product_id)

    async def find_product_by_name(self, name: str) -> Product | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Product).where(Product.name == name))
            return result.scalar_one_or_none()

    async def get_or_create_product(self, name: str) -> Product:
        """Return the named product, creating an unpriced row on first reference."""
        name = name.strip()
        if not name:
            raise ValueError("Product name must not be empty")

        existing = await self.find_product_by_name(name)
        if existing is not None:
            return existing

        async with self.session_factory() as session:
            product = Product(name=name)
            session.add(product)
            try:
                await session.commit()
            except IntegrityError:
                # Created concurrently under the same name
                await session.rollback()
                existing = await self.find_product_by_name(name)
                if existing is None:
                    raise PersistenceError(f"Failed to create product {name!r}") from None
                return existing
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"Failed to create product {name!r}") from e
            await session.refresh(product)

        logger.info(f"Created product: {product.name} (ID: {product.pid})")
        return product

    async def save(self, product: Product) -> Product:
        """Upsert one product row.

        Raises:
            PersistenceError: If the commit failed. The session is rolled back.
        """
        async with self.session_factory() as session:
            try:
                merged = await session.merge(product)
                await session.commit()
                await session.refresh(merged)
            except SQLAlchemyError as e:
                await session.rollback()
                logger.exception(f"Failed to save product {product.pid}")
                raise PersistenceError(f"Failed to save product {product.pid}") from e
            return merged

    async def find_watchers_by_product_id(
        self, product_id: int, today: date | None = None
    ) -> list[User]:
        """Return users with an unexpired watch on a product.

        A watch without an end date never expires.
        """
        today = today or datetime.now(UTC).date()
        async with self.session_factory() as session:
            stmt = (
                select(User)
                .join(Watchlist, Watchlist.uid == User.uid)
                .where(
                    Watchlist.pid == product_id,
                    or_(Watchlist.watch_end_date.is_(None), Watchlist.watch_end_date >= today),
                )
                .order_by(User.uid)
            )
            result = await session.execute(stmt)
            return list(result.scalars().unique().all())


__all__ = ["SqlProductStore"]
