"""Protocol definitions for the external collaborators of the pipeline.

The pipeline depends on these abstractions rather than on concrete clients:
- `ITextGenerator` for the generative-text service
- `IProductStore` for product, user and watchlist records
- `IPushTransport` for device push delivery
"""

from .push import IPushTransport
from .store import IProductStore
from .text_generation import FinishReason, GenerationResult, ITextGenerator

__all__ = [
    "FinishReason",
    "GenerationResult",
    "IProductStore",
    "IPushTransport",
    "ITextGenerator",
]
