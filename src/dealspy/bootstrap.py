"""Wiring of the price discovery pipeline from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from dealspy.core.config import Settings
from dealspy.core.db import create_engine, create_session_factory
from dealspy.price_discovery.gemini import GeminiClient, GeminiConfig
from dealspy.price_discovery.ladder import PromptLadder
from dealspy.price_discovery.notifier import PriceDropNotifier
from dealspy.price_discovery.orchestrator import PriceUpdateOrchestrator
from dealspy.price_discovery.parser import PriceBand
from dealspy.price_discovery.prompts import build_strategies
from dealspy.price_discovery.push import FcmConfig, FcmPushTransport
from dealspy.price_discovery.scheduler import PriceUpdateScheduler
from dealspy.price_discovery.store import SqlProductStore

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Every long-lived component of a running pipeline."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    store: SqlProductStore
    gemini: GeminiClient
    ladder: PromptLadder
    orchestrator: PriceUpdateOrchestrator
    scheduler: PriceUpdateScheduler
    push: FcmPushTransport | None = None
    notifier: PriceDropNotifier | None = None

    async def aclose(self, timeout: float | None = None) -> None:
        """Flush pending notifications, then close clients and the engine."""
        await self.scheduler.stop()
        if self.notifier is not None:
            await self.notifier.aclose(
                timeout=timeout if timeout is not None else self.settings.shutdown_timeout_seconds
            )
        if self.push is not None:
            await self.push.aclose()
        await self.gemini.aclose()
        await self.engine.dispose()


def price_band(settings: Settings) -> PriceBand:
    return PriceBand(
        minimum=Decimal(str(settings.price_min)),
        maximum=Decimal(str(settings.price_max)),
    )


def build_pipeline(settings: Settings) -> Pipeline:
    """Build the pipeline.

    Notifications are disabled, with a warning, when push credentials are
    missing. A missing text-generation key is an error.

    Raises:
        ConfigurationError: If the text-generation API key is not set.
    """
    gemini = GeminiClient(GeminiConfig.from_settings(settings))
    engine = create_engine(settings.database_url)
    session_factory = create_session_factory(engine)
    store = SqlProductStore(session_factory)

    strategies = build_strategies(settings.prompt_strategies, settings.currency_symbol)
    ladder = PromptLadder(gemini, strategies, band=price_band(settings))

    push: FcmPushTransport | None = None
    notifier: PriceDropNotifier | None = None
    if settings.fcm_configured:
        push = FcmPushTransport(FcmConfig.from_settings(settings))
        notifier = PriceDropNotifier(
            store,
            push,
            max_workers=settings.notification_workers,
            currency_symbol=settings.currency_symbol,
        )
    else:
        logger.warning("Push credentials not configured, price-drop notifications disabled")

    orchestrator = PriceUpdateOrchestrator(
        store,
        ladder,
        notifier,
        inter_product_delay=settings.inter_product_delay_seconds,
    )
    scheduler = PriceUpdateScheduler(
        orchestrator,
        interval_seconds=settings.update_interval_hours * 3600,
        shutdown_timeout=settings.shutdown_timeout_seconds,
    )

    return Pipeline(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        store=store,
        gemini=gemini,
        ladder=ladder,
        orchestrator=orchestrator,
        scheduler=scheduler,
        push=push,
        notifier=notifier,
    )


__all__ = ["Pipeline", "build_pipeline", "price_band"]
