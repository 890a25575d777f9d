"""Push delivery via the Firebase Cloud Messaging HTTP v1 API."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from dealspy.core.config import Settings
from dealspy.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"


@dataclass
class FcmConfig:
    """Configuration for the FCM transport."""

    project_id: str
    access_token: str
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> FcmConfig:
        if not settings.fcm_configured:
            raise ConfigurationError(
                "DEALSPY_FCM_PROJECT_ID and DEALSPY_FCM_ACCESS_TOKEN are required"
            )
        return cls(
            project_id=settings.fcm_project_id or "",
            access_token=settings.fcm_access_token or "",
            timeout_seconds=settings.fcm_timeout,
        )


class FcmPushTransport:
    """Send one notification per call. No retries."""

    def __init__(
        self, config: FcmConfig, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self._config = config
        self._url = FCM_SEND_URL.format(project_id=config.project_id)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                headers={
                    "Authorization": f"Bearer {self._config.access_token}",
                    "Content-Type": "application/json",
                },
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, token: str, title: str, body: str) -> bool:
        """Send a notification to one device token."""
        payload = {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
            }
        }
        try:
            client = await self._get_client()
            response = await client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Push send error: {e}")
            return False

        if response.status_code == 200:
            logger.info("Push sent successfully")
            return True

        if response.status_code == 404:
            logger.warning("Push token is no longer registered", extra={"token": token[:12]})
        else:
            logger.error(f"Failed to send push: {response.status_code} - {response.text[:200]}")
        return False


__all__ = ["FcmConfig", "FcmPushTransport"]
