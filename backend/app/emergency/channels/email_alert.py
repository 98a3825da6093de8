"""
email_alert.py — Email alert delivery channel.

Delivery mechanism:
    • SMTP with STARTTLS (smtplib; blocking, so it runs in a worker thread)
    • multipart/alternative: HTML body plus a plain-text fallback
    • Simulation mode for development

Email is only attempted for contacts that have an address on file and the
email preference switched on. It complements SMS rather than replacing it.

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: 🚨 EMERGENCY ALERT - {name} needs help!
    Body:
        ┌─────────────────────────────────────────┐
        │  🚨 EMERGENCY ALERT                      │
        │  {name} has activated an emergency alert │
        ├─────────────────────────────────────────┤
        │  Time / Location                         │
        │  [View Location on Map]                  │
        │  Contact: phone, email                   │
        │  Additional message (optional)           │
        └─────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

from backend.app.core.config import Settings
from backend.app.core.errors import ChannelDeliveryFailure
from backend.app.emergency.models import AlertContext

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Templates
# ═══════════════════════════════════════════════════════════════════════════

def build_alert_subject(context: AlertContext) -> str:
    return f"🚨 EMERGENCY ALERT - {context.user_name} needs help!"


def build_alert_html(context: AlertContext) -> str:
    """Render the HTML email body. User-supplied text is escaped."""
    name = html.escape(context.user_name)
    location = html.escape(context.address or "Location data available")
    map_url = html.escape(context.map_url, quote=True)
    extra = ""
    if context.message:
        extra = f"<p><strong>Additional Message:</strong> {html.escape(context.message)}</p>"

    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;">
      <h1 style="color:#ef4444;">🚨 EMERGENCY ALERT</h1>
      <p><strong>{name}</strong> has activated an emergency alert!</p>
      <p><strong>Time:</strong> {context.activated_at.strftime('%Y-%m-%d %H:%M UTC')}</p>
      <p><strong>Location:</strong> {location}</p>
      <p>
        <a href="{map_url}"
           style="background:#ef4444;color:white;padding:10px 20px;text-decoration:none;border-radius:5px;display:inline-block;margin:20px 0;">
          View Location on Map
        </a>
      </p>
      <h2>Contact Information:</h2>
      <p><strong>Phone:</strong> {html.escape(context.user_phone or "n/a")}</p>
      <p><strong>Email:</strong> {html.escape(context.user_email or "n/a")}</p>
      {extra}
      <p style="color:#ef4444;font-weight:bold;">Please contact them immediately!</p>
    </div>
    """


def build_alert_plain(context: AlertContext) -> str:
    text = (
        f"EMERGENCY ALERT\n"
        f"{context.user_name} has activated an emergency alert!\n\n"
        f"Time: {context.activated_at.strftime('%Y-%m-%d %H:%M UTC')}\n"
        f"Location: {context.location_label}\n"
        f"Map: {context.map_url}\n\n"
        f"Phone: {context.user_phone or 'n/a'}\n"
        f"Email: {context.user_email or 'n/a'}\n"
    )
    if context.message:
        text += f"\nAdditional Message: {context.message}\n"
    return text + "\nPlease contact them immediately!\n"


# ═══════════════════════════════════════════════════════════════════════════
# Gateway
# ═══════════════════════════════════════════════════════════════════════════

class EmailGateway:
    """
    Send alert emails.

    Parameters
    ----------
    provider : str
        "simulation" or "smtp".
    smtp_host, smtp_port : str, int
        SMTP server config (for provider="smtp").
    """

    def __init__(
        self,
        provider: str = "simulation",
        *,
        smtp_host: str = "localhost",
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        use_tls: bool = True,
        from_address: str = "SafeHer <noreply@safeher.com>",
        timeout_seconds: float = 20.0,
    ):
        self.provider = provider
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailGateway":
        return cls(
            settings.EMAIL_PROVIDER,
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
            from_address=settings.EMAIL_FROM,
            timeout_seconds=settings.EMAIL_TIMEOUT_SECONDS,
        )

    @property
    def is_simulated(self) -> bool:
        return self.provider == "simulation"

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> str:
        """Send one email. Returns the Message-ID; raises ChannelDeliveryFailure."""
        if not to:
            raise ChannelDeliveryFailure("email", "No email address on file")

        if self.provider == "simulation":
            ref = f"SIM-{uuid.uuid4().hex[:12]}"
            logger.info(
                "[EMAIL] → %s: '%s' (%d chars html) (%s)",
                to, subject, len(html_body), ref,
                extra={"channel": "email"},
            )
            return ref

        if self.provider == "smtp":
            msg = self._build_message(to, subject, html_body, text_body)
            try:
                await asyncio.to_thread(self._deliver, to, msg)
            except (smtplib.SMTPException, OSError) as e:
                raise ChannelDeliveryFailure("email", str(e), provider="smtp") from e
            logger.info("[EMAIL/SMTP] Sent to %s: %s", to, msg["Message-ID"], extra={"channel": "email"})
            return msg["Message-ID"]

        raise ChannelDeliveryFailure("email", f"Unknown email provider: {self.provider}")

    async def close(self) -> None:
        # SMTP connections are opened per message
        return None

    def _build_message(self, to: str, subject: str, html_body: str, text_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to
        msg["Message-ID"] = make_msgid(domain="safeher")
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    def _deliver(self, to: str, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as server:
            if self.use_tls:
                server.starttls()
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.from_address, [to], msg.as_string())
