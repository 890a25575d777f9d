"""Price update orchestration: search, detect drops, persist, notify."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from dealspy.core.errors import ProductNotFoundError
from dealspy.core.logging import log_event
from dealspy.core.protocols.store import IProductStore
from dealspy.price_discovery.ladder import PromptLadder
from dealspy.price_discovery.models import Product
from dealspy.price_discovery.notifier import PriceDropNotifier
from dealspy.price_discovery.pricing import PriceChange, apply_price, apply_search_result

logger = logging.getLogger(__name__)


class UpdateStatus(str, enum.Enum):
    UPDATED = "updated"
    DROPPED = "dropped"
    UNCHANGED = "unchanged"  # Search failed, record left untouched
    FAILED = "failed"  # Exception while updating, record left untouched


@dataclass(frozen=True)
class UpdateOutcome:
    product_id: int | None
    product_name: str
    status: UpdateStatus
    price: Decimal | None = None
    previous_price: Decimal | None = None
    error: str | None = None


@dataclass
class BatchReport:
    total: int = 0
    cancelled: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    outcomes: list[UpdateOutcome] = field(default_factory=list)

    def count(self, status: UpdateStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    def summary(self) -> dict[str, int | bool]:
        return {
            "total": self.total,
            "processed": self.processed,
            "updated": self.count(UpdateStatus.UPDATED),
            "dropped": self.count(UpdateStatus.DROPPED),
            "unchanged": self.count(UpdateStatus.UNCHANGED),
            "failed": self.count(UpdateStatus.FAILED),
            "cancelled": self.cancelled,
        }


class PriceUpdateOrchestrator:
    """Drive price updates for one product or the whole catalog.

    Batches run one product at a time with a pause between products to stay
    inside the text-generation quota. A failure while updating one product is
    logged and never stops the batch; only failing to list the catalog does.
    """

    def __init__(
        self,
        store: IProductStore,
        ladder: PromptLadder,
        notifier: PriceDropNotifier | None = None,
        *,
        inter_product_delay: float = 1.5,
    ) -> None:
        self.store = store
        self.ladder = ladder
        self.notifier = notifier
        self.inter_product_delay = inter_product_delay
        self._batch_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._stats: dict[str, int] = {
            "checks_total": 0,
            "checks_success": 0,
            "checks_failed": 0,
            "drops_detected": 0,
            "notifications_triggered": 0,
        }

    # ------------------------------------------------------------------
    # Single product
    # ------------------------------------------------------------------

    async def update_one(self, product_id: int) -> UpdateOutcome:
        """Update one product by id.

        Raises:
            ProductNotFoundError: If no product has this id.
        """
        product = await self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return await self.update_product(product)

    async def update_by_name(self, name: str) -> UpdateOutcome:
        """Update a product by name, creating it on first reference."""
        product = await self.store.get_or_create_product(name)
        return await self.update_product(product)

    async def update_product(self, product: Product) -> UpdateOutcome:
        """Search for a product's price and record the result.

        A failed search leaves the stored record exactly as it was. Errors
        from the store propagate to the caller.
        """
        self._stats["checks_total"] += 1
        logger.info(f"Checking price: {product.name}", extra={"product_id": product.pid})

        result = await self.ladder.search(product.name)
        if not result.success:
            self._stats["checks_failed"] += 1
            logger.warning(
                f"Could not extract price for {product.name} - keeping last known data",
                extra={"product_id": product.pid},
            )
            return UpdateOutcome(
                product_id=product.pid,
                product_name=product.name,
                status=UpdateStatus.UNCHANGED,
                previous_price=product.current_price,
            )

        change = apply_search_result(product, result)
        saved = await self.store.save(product)
        self._stats["checks_success"] += 1

        logger.info(
            f"Updated {saved.name}: {change.new_price} from {result.platform or 'unknown'}",
            extra={
                "product_id": saved.pid,
                "previous_price": str(change.previous_price),
                "price_state": change.state.value,
                "strategy": result.strategy,
            },
        )
        return self._finish(saved, change)

    async def apply_manual_price(self, product_id: int, price: Decimal) -> UpdateOutcome:
        """Set a price by hand, with the same drop detection and alerts.

        Raises:
            ProductNotFoundError: If no product has this id.
            ValueError: If the price is not positive.
        """
        if price <= 0:
            raise ValueError("Price must be positive")
        product = await self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        change = apply_price(product, price)
        saved = await self.store.save(product)
        logger.info(
            f"Manual price for {saved.name}: {change.previous_price} -> {change.new_price}",
            extra={"product_id": saved.pid},
        )
        return self._finish(saved, change)

    async def send_test_notification(self, product_id: int) -> bool:
        """Trigger a fan-out for a product's current price without changing it.

        Returns:
            True if a fan-out was scheduled.
        """
        product = await self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if product.current_price is None:
            logger.warning(f"{product.name} has no price yet, not notifying")
            return False
        return self._trigger_notification(product, product.current_price)

    def _finish(self, product: Product, change: PriceChange) -> UpdateOutcome:
        if change.dropped:
            self._stats["drops_detected"] += 1
            log_event(
                "PriceDropDetected",
                product_id=product.pid,
                product_name=product.name,
                previous_price=change.previous_price,
                new_price=change.new_price,
                platform=product.platform,
            )
            self._trigger_notification(product, change.new_price)
        return UpdateOutcome(
            product_id=product.pid,
            product_name=product.name,
            status=UpdateStatus.DROPPED if change.dropped else UpdateStatus.UPDATED,
            price=change.new_price,
            previous_price=change.previous_price,
        )

    def _trigger_notification(self, product: Product, price: Decimal) -> bool:
        if self.notifier is None:
            logger.debug("No notifier configured, skipping price-drop alert")
            return False
        try:
            task = self.notifier.notify_price_drop(product.pid, product.name, price)
        except Exception:
            logger.exception(f"Failed to schedule notifications for {product.name}")
            return False
        if task is None:
            return False
        self._stats["notifications_triggered"] += 1
        return True

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def request_stop(self) -> bool:
        """Ask a running batch to stop before its next product.

        Returns False when no batch is running; the request is then dropped so
        it cannot cancel a later batch.
        """
        if not self._batch_lock.locked():
            logger.debug("Stop requested with no batch running, ignoring")
            return False
        self._stop_event.set()
        return True

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def _pause(self) -> bool:
        """Sleep between products. Returns True if a stop was requested meanwhile."""
        if self.inter_product_delay <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.inter_product_delay)
        except TimeoutError:
            return False
        return True

    async def update_all(self) -> BatchReport:
        """Update every product in the catalog, one at a time.

        Concurrent calls queue behind the running batch. A stop request ends the
        batch before the next product; products already processed stay saved.
        """
        async with self._batch_lock:
            try:
                return await self._run_batch()
            finally:
                self._stop_event.clear()

    async def _run_batch(self) -> BatchReport:
        report = BatchReport()
        product_ids = await self.store.list_product_ids()
        report.total = len(product_ids)
        logger.info(f"Starting price update for {report.total} products")

        for index, product_id in enumerate(product_ids):
            if self._stop_event.is_set() or (index > 0 and await self._pause()):
                report.cancelled = True
                logger.info(
                    f"Stop requested, {report.total - index} products left unprocessed"
                )
                break

            report.outcomes.append(await self._update_isolated(product_id))

        report.finished_at = datetime.now(UTC)
        logger.info("Price update complete", extra=report.summary())
        return report

    async def _update_isolated(self, product_id: int) -> UpdateOutcome:
        product: Product | None = None
        try:
            product = await self.store.get_product(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            return await self.update_product(product)
        except Exception as e:
            self._stats["checks_failed"] += 1
            name = product.name if product is not None else str(product_id)
            logger.error(f"Failed to update product {name}: {e}", exc_info=True)
            return UpdateOutcome(
                product_id=product_id,
                product_name=name,
                status=UpdateStatus.FAILED,
                error=str(e),
            )

    def get_status(self) -> dict[str, bool | dict[str, int]]:
        return {
            "batch_running": self._batch_lock.locked(),
            "stop_requested": self._stop_event.is_set(),
            "stats": dict(self._stats),
        }


__all__ = ["BatchReport", "PriceUpdateOrchestrator", "UpdateOutcome", "UpdateStatus"]
