"""Price discovery ORM models."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dealspy.core.db import Base, _utc_now


class PriceState(str, enum.Enum):
    """Outcome of the most recent price observation.

    UNKNOWN until the first successful extraction, then STABLE or DROPPED
    depending on whether that observation was lower than the previous price.
    """

    UNKNOWN = "unknown"
    STABLE = "stable"
    DROPPED = "dropped"


class Product(Base):
    """A product tracked by name across retailers.

    Created lazily the first time a user or a catalog scan references the name.
    Price fields are only written by the update orchestrator.
    """

    __tablename__ = "product"

    pid: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    current_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    last_lowest_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    price_state: Mapped[PriceState] = mapped_column(
        Enum(PriceState, name="price_state", values_callable=lambda e: [m.value for m in e]),
        default=PriceState.UNKNOWN,
    )
    platform: Mapped[str | None] = mapped_column(String(100), nullable=True)
    deep_link: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    description: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    watches: Mapped[list[Watchlist]] = relationship(
        back_populates="product", cascade="all, delete-orphan"
    )

    @property
    def is_price_dropped(self) -> bool | None:
        """Tri-state view of ``price_state`` (None while unpriced)."""
        if self.price_state is None or self.price_state is PriceState.UNKNOWN:
            return None
        return self.price_state is PriceState.DROPPED

    def __repr__(self) -> str:
        return (
            f"<Product(pid={self.pid}, name={self.name!r}, "
            f"current_price={self.current_price}, price_state={self.price_state})>"
        )


class User(Base):
    """A user as issued by the identity provider, with an optional push token."""

    __tablename__ = "users"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fcm_token: Mapped[str | None] = mapped_column(String(512), nullable=True)

    watches: Mapped[list[Watchlist]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class Watchlist(Base):
    """A user's interest in price drops for one product."""

    __tablename__ = "user_product_watchlist"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uid: Mapped[str] = mapped_column(ForeignKey("users.uid", ondelete="CASCADE"), index=True)
    pid: Mapped[int] = mapped_column(ForeignKey("product.pid", ondelete="CASCADE"), index=True)
    # Null means the watch never expires
    watch_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    user: Mapped[User] = relationship(back_populates="watches")
    product: Mapped[Product] = relationship(back_populates="watches")

    __table_args__ = (UniqueConstraint("uid", "pid", name="uq_watchlist_user_product"),)


__all__ = ["PriceState", "Product", "User", "Watchlist"]
