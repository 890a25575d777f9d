"""Price Discovery Module.

Finds the lowest current price of tracked products by asking a generative-text
service through a ladder of prompts, detects price drops and notifies watchers.
"""

from dealspy.price_discovery.ladder import PromptLadder
from dealspy.price_discovery.notifier import PriceDropNotifier
from dealspy.price_discovery.orchestrator import (
    BatchReport,
    PriceUpdateOrchestrator,
    UpdateOutcome,
    UpdateStatus,
)
from dealspy.price_discovery.parser import PriceBand, parse_response
from dealspy.price_discovery.result import PriceSearchResult, PromptAttempt
from dealspy.price_discovery.scheduler import PriceUpdateScheduler

__all__ = [
    "BatchReport",
    "PriceBand",
    "PriceDropNotifier",
    "PriceSearchResult",
    "PriceUpdateOrchestrator",
    "PriceUpdateScheduler",
    "PromptAttempt",
    "PromptLadder",
    "UpdateOutcome",
    "UpdateStatus",
    "parse_response",
]
