"""
web_push.py — Push notification channel.

Delivery mechanism:
    • HTTP POST to a push gateway (the service that holds device tokens)
    • Payload: JSON with title, body and a data block the app uses to open
      the alert (alert id, user id, coordinates)
    • Simulation mode for development

Push is off by default per contact; contacts opt in through their
notification preferences.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from backend.app.core.config import Settings
from backend.app.core.errors import ChannelDeliveryFailure
from backend.app.emergency.models import AlertContext

logger = logging.getLogger(__name__)


def build_alert_push(context: AlertContext) -> Dict[str, Any]:
    return {
        "title": "🚨 Emergency Alert",
        "body": f"{context.user_name} needs help! Tap to view location.",
        "data": {
            "alertId": context.alert_id,
            "userId": context.user_id,
            "location": {
                "latitude": context.latitude,
                "longitude": context.longitude,
            },
        },
    }


class PushGateway:
    """Deliver push notifications through an HTTP push gateway."""

    def __init__(
        self,
        provider: str = "simulation",
        *,
        gateway_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ):
        self.provider = provider
        self.gateway_url = gateway_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushGateway":
        return cls(
            settings.PUSH_PROVIDER,
            gateway_url=settings.PUSH_GATEWAY_URL,
            api_key=settings.PUSH_API_KEY,
            timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        )

    @property
    def is_simulated(self) -> bool:
        return self.provider == "simulation"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds, headers=headers)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send(self, contact_id: int, notification: Dict[str, Any]) -> str:
        """Push one notification to a contact's devices. Returns a delivery id."""
        if self.provider == "simulation":
            ref = f"SIM-{uuid.uuid4().hex[:12]}"
            logger.info(
                "[PUSH] → contact %s: '%s' (%s)",
                contact_id, notification.get("title"), ref,
                extra={"channel": "push", "contact_id": contact_id},
            )
            return ref

        if self.provider != "gateway":
            raise ChannelDeliveryFailure("push", f"Unknown push provider: {self.provider}")
        if not self.gateway_url:
            raise ChannelDeliveryFailure("push", "Push gateway URL not configured")

        client = await self._get_client()
        try:
            response = await client.post(
                self.gateway_url,
                json={"recipient": str(contact_id), "notification": notification},
            )
            response.raise_for_status()
            data = response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            raise ChannelDeliveryFailure(
                "push", f"Push gateway returned {e.response.status_code}",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ChannelDeliveryFailure("push", str(e)) from e

        return str(data.get("id") or f"push-{contact_id}")
