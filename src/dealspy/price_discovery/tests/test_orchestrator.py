"""Tests for PriceUpdateOrchestrator."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from dealspy.core.errors import ProductNotFoundError
from dealspy.core.protocols.text_generation import FinishReason, GenerationResult
from dealspy.price_discovery.ladder import PromptLadder
from dealspy.price_discovery.models import PriceState
from dealspy.price_discovery.notifier import PriceDropNotifier
from dealspy.price_discovery.orchestrator import PriceUpdateOrchestrator, UpdateStatus
from dealspy.price_discovery.prompts import build_strategies


def _make_orchestrator(store, client, notifier=None, delay: float = 0) -> PriceUpdateOrchestrator:
    ladder = PromptLadder(client, build_strategies(["standard", "minimal"]))
    return PriceUpdateOrchestrator(store, ladder, notifier, inter_product_delay=delay)


def _mock_notifier() -> MagicMock:
    notifier = MagicMock()
    notifier.notify_price_drop.return_value = MagicMock(name="task")
    return notifier


class TestUpdateProduct:
    """Tests for single-product updates."""

    @pytest.mark.asyncio
    async def test_price_drop_notifies(self, store, make_generator) -> None:
        """Test a lower price is saved, flagged and announced."""
        product = store.add_product(
            "Boat Airdopes 141",
            current_price=Decimal("1500"),
            last_lowest_price=Decimal("1500"),
            price_state=PriceState.STABLE,
        )
        notifier = _mock_notifier()
        orchestrator = _make_orchestrator(
            store, make_generator(["Lowest ₹1,299 on Flipkart"]), notifier
        )

        outcome = await orchestrator.update_one(product.pid)

        assert outcome.status is UpdateStatus.DROPPED
        assert outcome.price == Decimal("1299")
        assert outcome.previous_price == Decimal("1500")
        saved = store.products[product.pid]
        assert saved.current_price == Decimal("1299")
        assert saved.last_lowest_price == Decimal("1299")
        assert saved.price_state is PriceState.DROPPED
        assert saved.platform == "Flipkart"
        notifier.notify_price_drop.assert_called_once_with(
            product.pid, "Boat Airdopes 141", Decimal("1299")
        )
        assert orchestrator.get_status()["stats"]["drops_detected"] == 1

    @pytest.mark.asyncio
    async def test_price_rise_is_silent(self, store, make_generator) -> None:
        """Test a higher price is saved without a notification."""
        product = store.add_product(
            "Boat Airdopes 141",
            current_price=Decimal("1299"),
            last_lowest_price=Decimal("1299"),
            price_state=PriceState.DROPPED,
        )
        notifier = _mock_notifier()
        client = make_generator(["Now ₹1,399 on Amazon"])
        orchestrator = _make_orchestrator(store, client, notifier)

        outcome = await orchestrator.update_one(product.pid)

        assert outcome.status is UpdateStatus.UPDATED
        saved = store.products[product.pid]
        assert saved.current_price == Decimal("1399")
        assert saved.last_lowest_price == Decimal("1299")
        assert saved.price_state is PriceState.STABLE
        notifier.notify_price_drop.assert_not_called()

    @pytest.mark.asyncio
    async def test_first_observation(self, store, make_generator) -> None:
        """Test an unpriced product gets its first price without an alert."""
        product = store.add_product("Prestige Induction Cooktop")
        notifier = _mock_notifier()
        orchestrator = _make_orchestrator(store, make_generator(["₹2,199 on Amazon"]), notifier)

        outcome = await orchestrator.update_one(product.pid)

        assert outcome.status is UpdateStatus.UPDATED
        saved = store.products[product.pid]
        assert saved.current_price == Decimal("2199")
        assert saved.last_lowest_price == Decimal("2199")
        assert saved.price_state is PriceState.STABLE
        notifier.notify_price_drop.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_search_leaves_record_untouched(self, store, make_generator) -> None:
        """Test a failed ladder changes nothing and saves nothing."""
        product = store.add_product(
            "Boat Airdopes 141",
            current_price=Decimal("1500"),
            last_lowest_price=Decimal("1400"),
            price_state=PriceState.STABLE,
            platform="Flipkart",
            deep_link="https://www.flipkart.com/boat/p/itm1",
        )
        before = store.snapshot(product.pid)
        orchestrator = _make_orchestrator(
            store, make_generator(["No idea.", "Cannot find that."]), _mock_notifier()
        )

        outcome = await orchestrator.update_one(product.pid)

        assert outcome.status is UpdateStatus.UNCHANGED
        assert store.snapshot(product.pid) == before
        assert store.saves == []

    @pytest.mark.asyncio
    async def test_unknown_product(self, store, make_generator) -> None:
        """Test an unknown id raises ProductNotFoundError."""
        orchestrator = _make_orchestrator(store, make_generator([]))

        with pytest.raises(ProductNotFoundError):
            await orchestrator.update_one(404)

    @pytest.mark.asyncio
    async def test_update_by_name_creates_product(self, store, make_generator) -> None:
        """Test a new name is added to the catalog and priced."""
        orchestrator = _make_orchestrator(store, make_generator(["₹349 on Nykaa"]))

        outcome = await orchestrator.update_by_name("Lakme Lipstick")

        assert outcome.status is UpdateStatus.UPDATED
        assert [p.name for p in store.products.values()] == ["Lakme Lipstick"]
        assert outcome.price == Decimal("349")

    @pytest.mark.asyncio
    async def test_real_notifier_sends_message(
        self, store, push_transport, make_generator
    ) -> None:
        """Test a drop reaches every watcher with a device token."""
        product = store.add_product(
            "Boat Airdopes 141", current_price=Decimal("1500"), price_state=PriceState.STABLE
        )
        store.add_watcher(product.pid, "u1", "token-1")
        store.add_watcher(product.pid, "u2", None)
        notifier = PriceDropNotifier(store, push_transport)
        orchestrator = _make_orchestrator(store, make_generator(["₹1,299 on Flipkart"]), notifier)

        await orchestrator.update_one(product.pid)
        await notifier.wait_idle()

        assert push_transport.sent == [
            ("token-1", "Price Dropped!", "Price of Boat Airdopes 141 has dropped to ₹1,299")
        ]


class TestManualOperations:
    """Tests for manual price entry and test notifications."""

    @pytest.mark.asyncio
    async def test_manual_drop_notifies(self, store, make_generator) -> None:
        """Test a manual lower price goes through drop detection."""
        product = store.add_product(
            "Yoga Mat", current_price=Decimal("999"), price_state=PriceState.STABLE
        )
        notifier = _mock_notifier()
        orchestrator = _make_orchestrator(store, make_generator([]), notifier)

        outcome = await orchestrator.apply_manual_price(product.pid, Decimal("799"))

        assert outcome.status is UpdateStatus.DROPPED
        assert store.products[product.pid].current_price == Decimal("799")
        notifier.notify_price_drop.assert_called_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", ["0", "-5"])
    async def test_manual_price_must_be_positive(self, store, make_generator, price) -> None:
        """Test non-positive manual prices are rejected."""
        product = store.add_product("Yoga Mat")
        orchestrator = _make_orchestrator(store, make_generator([]))

        with pytest.raises(ValueError):
            await orchestrator.apply_manual_price(product.pid, Decimal(price))

    @pytest.mark.asyncio
    async def test_test_notification(self, store, make_generator) -> None:
        """Test a test notification uses the current price and changes nothing."""
        product = store.add_product(
            "Yoga Mat", current_price=Decimal("999"), price_state=PriceState.STABLE
        )
        notifier = _mock_notifier()
        orchestrator = _make_orchestrator(store, make_generator([]), notifier)

        assert await orchestrator.send_test_notification(product.pid) is True
        notifier.notify_price_drop.assert_called_once_with(product.pid, "Yoga Mat", Decimal("999"))
        assert store.saves == []

    @pytest.mark.asyncio
    async def test_test_notification_without_price(self, store, make_generator) -> None:
        """Test nothing is sent for an unpriced product."""
        product = store.add_product("Yoga Mat")
        notifier = _mock_notifier()
        orchestrator = _make_orchestrator(store, make_generator([]), notifier)

        assert await orchestrator.send_test_notification(product.pid) is False
        notifier.notify_price_drop.assert_not_called()

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_update(self, store, make_generator) -> None:
        """Test an error while scheduling alerts still reports the update."""
        product = store.add_product(
            "Yoga Mat", current_price=Decimal("999"), price_state=PriceState.STABLE
        )
        notifier = MagicMock()
        notifier.notify_price_drop.side_effect = RuntimeError("queue full")
        orchestrator = _make_orchestrator(store, make_generator(["₹899"]), notifier)

        outcome = await orchestrator.update_one(product.pid)

        assert outcome.status is UpdateStatus.DROPPED
        assert store.products[product.pid].current_price == Decimal("899")


class TestUpdateAll:
    """Tests for catalog batches."""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_batch(
        self, store, make_product_generator
    ) -> None:
        """Test an unexpected error on one product leaves the others updated."""
        alpha = store.add_product("Alpha Kettle", current_price=Decimal("1500"))
        bravo = store.add_product("Bravo Toaster", current_price=Decimal("2500"))
        charlie = store.add_product("Charlie Mixer", current_price=Decimal("3500"))
        before = store.snapshot(bravo.pid)
        client = make_product_generator(
            {
                "Alpha Kettle": "₹1,199 on Amazon",
                "Bravo Toaster": ConnectionResetError("connection reset"),
                "Charlie Mixer": "₹3,499 on Flipkart",
            }
        )
        orchestrator = _make_orchestrator(store, client)

        report = await orchestrator.update_all()

        statuses = {outcome.product_id: outcome.status for outcome in report.outcomes}
        assert statuses == {
            alpha.pid: UpdateStatus.DROPPED,
            bravo.pid: UpdateStatus.FAILED,
            charlie.pid: UpdateStatus.DROPPED,
        }
        assert store.products[alpha.pid].current_price == Decimal("1199")
        assert store.products[charlie.pid].current_price == Decimal("3499")
        assert store.snapshot(bravo.pid) == before
        assert report.summary()["failed"] == 1
        assert report.cancelled is False

    @pytest.mark.asyncio
    async def test_save_failure_is_isolated(self, store, make_generator) -> None:
        """Test a persistence error is reported for that product only."""
        first = store.add_product("Alpha Kettle")
        second = store.add_product("Bravo Toaster")
        store.fail_on_save.add(first.pid)
        orchestrator = _make_orchestrator(store, make_generator(["₹1,000", "₹2,000"]))

        report = await orchestrator.update_all()

        assert [outcome.status for outcome in report.outcomes] == [
            UpdateStatus.FAILED,
            UpdateStatus.UPDATED,
        ]
        assert store.products[second.pid].current_price == Decimal("2000")

    @pytest.mark.asyncio
    async def test_empty_catalog(self, store, make_generator) -> None:
        """Test an empty catalog yields an empty report."""
        report = await _make_orchestrator(store, make_generator([])).update_all()

        assert report.total == 0
        assert report.outcomes == []

    @pytest.mark.asyncio
    async def test_stop_before_next_product(self, store) -> None:
        """Test a stop request ends the batch after the current product."""
        for name in ("Alpha Kettle", "Bravo Toaster", "Charlie Mixer"):
            store.add_product(name)

        class StoppingGenerator:
            def __init__(self) -> None:
                self.orchestrator: PriceUpdateOrchestrator | None = None

            async def generate(self, prompt: str, max_output_tokens: int) -> GenerationResult:
                assert self.orchestrator is not None
                self.orchestrator.request_stop()
                return GenerationResult(text="₹1,000", finish_reason=FinishReason.STOP)

        client = StoppingGenerator()
        orchestrator = _make_orchestrator(store, client)
        client.orchestrator = orchestrator

        report = await orchestrator.update_all()

        assert report.cancelled is True
        assert report.processed == 1
        assert report.total == 3
        assert orchestrator.stop_requested is False

    @pytest.mark.asyncio
    async def test_stop_interrupts_the_pause(self, store) -> None:
        """Test a stop during the inter-product pause is honoured promptly."""
        for name in ("Alpha Kettle", "Bravo Toaster"):
            store.add_product(name)
        first_call = asyncio.Event()

        class SignallingGenerator:
            async def generate(self, prompt: str, max_output_tokens: int) -> GenerationResult:
                first_call.set()
                return GenerationResult(text="₹1,000", finish_reason=FinishReason.STOP)

        orchestrator = _make_orchestrator(store, SignallingGenerator(), delay=30)
        task = asyncio.create_task(orchestrator.update_all())

        await asyncio.wait_for(first_call.wait(), timeout=1)
        orchestrator.request_stop()
        report = await asyncio.wait_for(task, timeout=1)

        assert report.cancelled is True
        assert report.processed == 1

    @pytest.mark.asyncio
    async def test_stop_while_idle_does_not_cancel_next_batch(
        self, store, make_generator
    ) -> None:
        """Test a stop request with no batch running is dropped."""
        product = store.add_product("Alpha Kettle")
        orchestrator = _make_orchestrator(store, make_generator(["₹1,000"]))

        assert orchestrator.request_stop() is False
        assert orchestrator.stop_requested is False

        report = await orchestrator.update_all()

        assert report.cancelled is False
        assert report.processed == 1
        assert store.products[product.pid].current_price == Decimal("1000")
