"""
sms_gateway.py — SMS delivery channel via gateway integration.

Delivery mechanism:
    • Twilio REST API (twilio SDK; blocking, so it runs in a worker thread)
    • Termii HTTP API for Nigerian (+234) numbers when a Termii key is set
    • Simulation mode for development: logs and returns a fake reference

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    Dispatcher  →  SmsGateway.send(phone, body)
                        │
                        ├── +234… and TERMII_API_KEY  →  POST api.ng.termii.com
                        ├── provider == "twilio"      →  client.messages.create
                        └── provider == "simulation"  →  log only

    Every failure is raised as ChannelDeliveryFailure; the dispatcher
    turns it into a `failed` outcome.

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATING
═══════════════════════════════════════════════════════════════════════════

    🚨 EMERGENCY ALERT from {name}!

    Time: {activated_at}
    Location: {address | "View on map"}
    Map: {map_url}

    Please contact them immediately:
    Phone: {phone}
    Email: {email}
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

import httpx
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from backend.app.core.config import Settings
from backend.app.core.errors import ChannelDeliveryFailure
from backend.app.emergency.models import AlertContext, AlertStatus, ResolutionOutcome

logger = logging.getLogger(__name__)

NIGERIA_PREFIX = "+234"


# ═══════════════════════════════════════════════════════════════════════════
# Templates
# ═══════════════════════════════════════════════════════════════════════════

def format_alert_sms(context: AlertContext) -> str:
    """Render the panic SMS sent to each contact."""
    lines = [
        f"🚨 EMERGENCY ALERT from {context.user_name}!",
        "",
        f"Time: {context.activated_at.strftime('%Y-%m-%d %H:%M UTC')}",
        f"Location: {context.address or 'View on map'}",
        f"Map: {context.map_url}",
    ]
    if context.message:
        lines.append(f"Message: {context.message}")
    lines += [
        "",
        "Please contact them immediately:",
        f"Phone: {context.user_phone or 'n/a'}",
        f"Email: {context.user_email or 'n/a'}",
    ]
    return "\n".join(lines)


def format_resolution_sms(
    user_name: str,
    status: AlertStatus,
    outcome: Optional[ResolutionOutcome] = None,
) -> str:
    """Render the follow-up SMS sent when an alert leaves `active`."""
    if status == AlertStatus.RESOLVED:
        label = (outcome or ResolutionOutcome.UNKNOWN).value
        return (
            f"✅ SafeHer Alert Update: {user_name} has marked their emergency "
            f"as resolved. Status: {label}"
        )
    if status == AlertStatus.FALSE_ALARM:
        return (
            f"✅ SafeHer Alert Update: {user_name}'s emergency alert was a "
            f"false alarm. No action is needed."
        )
    return f"✅ SafeHer Alert Update: {user_name} has cancelled their emergency alert."


# ═══════════════════════════════════════════════════════════════════════════
# Gateway
# ═══════════════════════════════════════════════════════════════════════════

class SmsGateway:
    """
    Provider-agnostic SMS sender.

    Parameters
    ----------
    provider : str
        "simulation", "twilio" or "termii". Termii is also picked per
        message for +234 numbers whenever `termii_api_key` is set.
    """

    def __init__(
        self,
        provider: str = "simulation",
        *,
        twilio_account_sid: Optional[str] = None,
        twilio_auth_token: Optional[str] = None,
        twilio_from_number: Optional[str] = None,
        termii_api_key: Optional[str] = None,
        termii_sender_id: str = "SafeHer",
        termii_api_url: str = "https://api.ng.termii.com/api/sms/send",
        timeout_seconds: float = 15.0,
    ):
        self.provider = provider
        self.twilio_account_sid = twilio_account_sid
        self.twilio_auth_token = twilio_auth_token
        self.twilio_from_number = twilio_from_number
        self.termii_api_key = termii_api_key
        self.termii_sender_id = termii_sender_id
        self.termii_api_url = termii_api_url
        self.timeout_seconds = timeout_seconds
        self._twilio: Optional[Client] = None
        self._http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmsGateway":
        return cls(
            settings.SMS_PROVIDER,
            twilio_account_sid=settings.TWILIO_ACCOUNT_SID,
            twilio_auth_token=settings.TWILIO_AUTH_TOKEN,
            twilio_from_number=settings.TWILIO_PHONE_NUMBER,
            termii_api_key=settings.TERMII_API_KEY,
            termii_sender_id=settings.TERMII_SENDER_ID,
            termii_api_url=settings.TERMII_API_URL,
            timeout_seconds=settings.SMS_TIMEOUT_SECONDS,
        )

    @property
    def is_simulated(self) -> bool:
        return self.provider == "simulation" and not self.termii_api_key

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send(self, phone: str, body: str) -> str:
        """
        Send one SMS. Returns the provider's message reference.

        Raises
        ------
        ChannelDeliveryFailure
            Provider unconfigured, unreachable or rejecting the message.
        """
        if not phone:
            raise ChannelDeliveryFailure("sms", "No phone number on file")

        if self.provider == "termii" or (
            phone.startswith(NIGERIA_PREFIX) and self.termii_api_key
        ):
            return await self._send_termii(phone, body)

        if self.provider == "simulation":
            ref = f"SIM-{uuid.uuid4().hex[:12]}"
            logger.info(
                "[SMS] → %s: %d chars → '%s' (%s)",
                phone, len(body),
                body[:60].replace("\n", " ") + ("..." if len(body) > 60 else ""),
                ref,
                extra={"channel": "sms"},
            )
            return ref

        if self.provider == "twilio":
            return await self._send_twilio(phone, body)

        raise ChannelDeliveryFailure("sms", f"Unknown SMS provider: {self.provider}")

    # ── Providers ──

    def _twilio_client(self) -> Client:
        if self._twilio is None:
            if not (self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number):
                raise ChannelDeliveryFailure("sms", "SMS service not configured")
            self._twilio = Client(self.twilio_account_sid, self.twilio_auth_token)
        return self._twilio

    async def _send_twilio(self, phone: str, body: str) -> str:
        client = self._twilio_client()
        try:
            message = await asyncio.to_thread(
                client.messages.create,
                body=body,
                from_=self.twilio_from_number,
                to=phone,
            )
        except TwilioException as e:
            raise ChannelDeliveryFailure("sms", str(e), provider="twilio") from e

        logger.info("[SMS/Twilio] Sent to %s: %s", phone, message.sid, extra={"channel": "sms"})
        return message.sid

    async def _send_termii(self, phone: str, body: str) -> str:
        if not self.termii_api_key:
            raise ChannelDeliveryFailure("sms", "SMS service not configured")
        client = await self._get_client()
        payload = {
            "to": phone,
            "from": self.termii_sender_id,
            "sms": body,
            "type": "plain",
            "channel": "generic",
            "api_key": self.termii_api_key,
        }
        try:
            response = await client.post(self.termii_api_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ChannelDeliveryFailure(
                "sms", f"Termii returned {e.response.status_code}", provider="termii",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ChannelDeliveryFailure("sms", str(e), provider="termii") from e

        ref = str(data.get("message_id") or data.get("messageId") or "termii")
        logger.info("[SMS/Termii] Sent to %s: %s", phone, ref, extra={"channel": "sms"})
        return ref
