"""Price-drop push notification fan-out."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from decimal import Decimal
from typing import Any

from dealspy.core.protocols.push import IPushTransport
from dealspy.core.protocols.store import IProductStore

logger = logging.getLogger(__name__)

TITLE = "Price Dropped!"
BODY_TEMPLATE = "Price of {name} has dropped to {currency}{price}"


def format_price(price: Decimal) -> str:
    if price == price.to_integral_value():
        return f"{price:,.0f}"
    return f"{price:,.2f}"


def build_message(
    product_name: str, new_price: Decimal, currency_symbol: str = "₹"
) -> tuple[str, str]:
    """Return the (title, body) pair for a price-drop push."""
    body = BODY_TEMPLATE.format(
        name=product_name, currency=currency_symbol, price=format_price(new_price)
    )
    return TITLE, body


class PriceDropNotifier:
    """Send one push per watcher when a product's price drops.

    Sends run as detached tasks limited by a semaphore of ``max_workers``, so a
    slow transport never holds up the caller. Failures are logged and dropped;
    retrying is left to the transport. The notifier owns its tasks: call
    :meth:`aclose` on shutdown.
    """

    def __init__(
        self,
        store: IProductStore,
        transport: IPushTransport,
        *,
        max_workers: int = 5,
        currency_symbol: str = "₹",
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.store = store
        self.transport = transport
        self.currency_symbol = currency_symbol
        self._semaphore = asyncio.Semaphore(max_workers)
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False
        self._stats: dict[str, int] = {
            "fanouts": 0,
            "sent": 0,
            "failed": 0,
            "skipped_no_token": 0,
        }

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def notify_price_drop(
        self, product_id: int, product_name: str, new_price: Decimal
    ) -> asyncio.Task[None] | None:
        """Schedule notifications for every watcher of a product and return at once.

        Returns:
            The background fan-out task, or None once the notifier is closed.
        """
        if self._closed:
            logger.warning(
                "Notifier closed, dropping price-drop notification",
                extra={"product_id": product_id},
            )
            return None

        self._stats["fanouts"] += 1
        return self._spawn(
            self._fan_out(product_id, product_name, new_price),
            name=f"price-drop-fanout-{product_id}",
        )

    async def _fan_out(self, product_id: int, product_name: str, new_price: Decimal) -> None:
        try:
            watchers = await self.store.find_watchers_by_product_id(product_id)
        except Exception:
            logger.exception(f"Failed to resolve watchers for product {product_id}")
            return

        if not watchers:
            logger.info(f"No watchers for {product_name}, nothing to notify")
            return

        title, body = build_message(product_name, new_price, self.currency_symbol)
        queued = 0
        for user in watchers:
            token = (user.fcm_token or "").strip()
            if not token:
                self._stats["skipped_no_token"] += 1
                continue
            self._spawn(
                self._send(user.uid, token, title, body),
                name=f"price-drop-push-{product_id}-{user.uid}",
            )
            queued += 1

        logger.info(
            f"Queued {queued} price-drop notifications for {product_name}",
            extra={"product_id": product_id, "watchers": len(watchers)},
        )

    async def _send(self, uid: str, token: str, title: str, body: str) -> None:
        async with self._semaphore:
            try:
                delivered = await self.transport.send(token, title, body)
            except Exception as e:
                self._stats["failed"] += 1
                logger.error(f"Push to user {uid} raised: {e}")
                return

        if delivered:
            self._stats["sent"] += 1
        else:
            self._stats["failed"] += 1
            logger.warning(f"Push to user {uid} was not delivered")

    async def wait_idle(self) -> None:
        """Wait until every scheduled fan-out and send has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self, timeout: float | None = None) -> None:
        """Stop accepting work, wait up to ``timeout`` and cancel what is left."""
        self._closed = True
        if not self._tasks:
            return
        try:
            await asyncio.wait_for(self.wait_idle(), timeout=timeout)
        except TimeoutError:
            remaining = list(self._tasks)
            logger.warning(f"Cancelling {len(remaining)} pending notifications")
            for task in remaining:
                task.cancel()
            await asyncio.gather(*remaining, return_exceptions=True)

    def get_status(self) -> dict[str, int | bool]:
        return {"closed": self._closed, "pending": self.pending, **self._stats}


__all__ = ["BODY_TEMPLATE", "TITLE", "PriceDropNotifier", "build_message", "format_price"]
