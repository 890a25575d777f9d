"""Exception hierarchy for the price discovery pipeline."""

from __future__ import annotations


class DealSpyError(Exception):
    """Base class for all pipeline errors."""


class TextGenerationError(DealSpyError):
    """Raised when the text-generation service cannot produce a response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(DealSpyError):
    """Raised when a store operation fails and has been rolled back."""


class ProductNotFoundError(DealSpyError, LookupError):
    """Raised when an administrative operation names an unknown product."""

    def __init__(self, product_id: int) -> None:
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class ConfigurationError(DealSpyError):
    """Raised when a requested component is missing required settings."""


__all__ = [
    "ConfigurationError",
    "DealSpyError",
    "PersistenceError",
    "ProductNotFoundError",
    "TextGenerationError",
]
