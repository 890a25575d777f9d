"""Protocol for device push delivery."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IPushTransport(Protocol):
    """Abstract interface for a push-notification transport.

    Implementations own their retry policy, if any.
    """

    async def send(self, token: str, title: str, body: str) -> bool:
        """Deliver one notification to one device token.

        Returns:
            True if the transport accepted the message.
        """
        ...


__all__ = ["IPushTransport"]
