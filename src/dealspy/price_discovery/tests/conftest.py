"""Fixtures and in-memory collaborators for price discovery tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dealspy.core.db import Base
from dealspy.core.errors import PersistenceError, TextGenerationError
from dealspy.core.protocols.text_generation import FinishReason, GenerationResult
from dealspy.price_discovery.models import PriceState, Product, User


class FakeTextGenerator:
    """Replays canned replies in order and records every prompt it receives.

    A reply may be a string, a GenerationResult or an exception to raise.
    Once the script runs out, every call gets an empty response.
    """

    def __init__(self, replies: list[str | GenerationResult | Exception] | None = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[tuple[str, int]] = []

    async def generate(self, prompt: str, max_output_tokens: int) -> GenerationResult:
        self.calls.append((prompt, max_output_tokens))
        if not self.replies:
            return GenerationResult(text="", finish_reason=FinishReason.STOP)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, GenerationResult):
            return reply
        return GenerationResult(text=reply, finish_reason=FinishReason.STOP)


class ProductAwareGenerator:
    """Answers by looking up the product name inside the prompt."""

    def __init__(self, answers: dict[str, str | Exception]) -> None:
        self.answers = answers
        self.calls: list[str] = []

    async def generate(self, prompt: str, max_output_tokens: int) -> GenerationResult:
        self.calls.append(prompt)
        for name, answer in self.answers.items():
            if name in prompt:
                if isinstance(answer, Exception):
                    raise answer
                return GenerationResult(text=answer, finish_reason=FinishReason.STOP)
        raise TextGenerationError("no scripted answer", status_code=500)


PRODUCT_FIELDS = (
    "pid",
    "name",
    "current_price",
    "last_lowest_price",
    "price_state",
    "platform",
    "deep_link",
    "image_url",
    "description",
    "last_checked_at",
)


def _clone(product: Product) -> Product:
    return Product(**{field: getattr(product, field) for field in PRODUCT_FIELDS})


class InMemoryProductStore:
    """Dict-backed store that hands out copies, like a detached ORM row."""

    def __init__(self) -> None:
        self.products: dict[int, Product] = {}
        self.watchers: dict[int, list[User]] = {}
        self.saves: list[Product] = []
        self.fail_on_save: set[int] = set()
        self.fail_watchers = False
        self._next_id = 1

    def add_product(
        self,
        name: str,
        current_price: Decimal | None = None,
        last_lowest_price: Decimal | None = None,
        price_state: PriceState = PriceState.UNKNOWN,
        platform: str | None = None,
        deep_link: str | None = None,
    ) -> Product:
        product = Product(
            pid=self._next_id,
            name=name,
            current_price=current_price,
            last_lowest_price=last_lowest_price,
            price_state=price_state,
            platform=platform,
            deep_link=deep_link,
        )
        self.products[product.pid] = product
        self._next_id += 1
        return product

    def add_watcher(self, product_id: int, uid: str, fcm_token: str | None) -> User:
        user = User(uid=uid, email=f"{uid}@example.com", fcm_token=fcm_token)
        self.watchers.setdefault(product_id, []).append(user)
        return user

    def snapshot(self, product_id: int) -> dict[str, object]:
        product = self.products[product_id]
        return {
            "name": product.name,
            "current_price": product.current_price,
            "last_lowest_price": product.last_lowest_price,
            "price_state": product.price_state,
            "platform": product.platform,
            "deep_link": product.deep_link,
            "last_checked_at": product.last_checked_at,
        }

    async def list_product_ids(self) -> list[int]:
        return sorted(self.products)

    async def get_product(self, product_id: int) -> Product | None:
        product = self.products.get(product_id)
        return _clone(product) if product is not None else None

    async def find_product_by_name(self, name: str) -> Product | None:
        for product in self.products.values():
            if product.name == name:
                return _clone(product)
        return None

    async def get_or_create_product(self, name: str) -> Product:
        existing = await self.find_product_by_name(name.strip())
        if existing is not None:
            return existing
        return _clone(self.add_product(name.strip()))

    async def save(self, product: Product) -> Product:
        if product.pid in self.fail_on_save:
            raise PersistenceError(f"Failed to save product {product.pid}")
        stored = _clone(product)
        self.products[product.pid] = stored
        self.saves.append(stored)
        return _clone(stored)

    async def find_watchers_by_product_id(
        self, product_id: int, today: date | None = None
    ) -> list[User]:
        if self.fail_watchers:
            raise PersistenceError("watchlist unavailable")
        return list(self.watchers.get(product_id, []))


class RecordingPushTransport:
    """Records sends. Tokens listed in ``failing`` return False, ``raising`` raise."""

    def __init__(self, failing: set[str] | None = None, raising: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.raising = raising or set()
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, token: str, title: str, body: str) -> bool:
        if token in self.raising:
            raise RuntimeError("transport exploded")
        self.sent.append((token, title, body))
        return token not in self.failing


@pytest.fixture
def store() -> InMemoryProductStore:
    return InMemoryProductStore()


@pytest.fixture
def push_transport() -> RecordingPushTransport:
    return RecordingPushTransport()


@pytest.fixture
def make_push_transport():
    """Factory for push transports with scripted failures."""
    return RecordingPushTransport


@pytest.fixture
def make_generator():
    """Factory for scripted text generators."""
    return FakeTextGenerator


@pytest.fixture
def make_product_generator():
    """Factory for generators that answer per product name."""
    return ProductAwareGenerator


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to an in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()
