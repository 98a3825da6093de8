"""
channels — Per-channel delivery gateways.

Each gateway exposes:
    async send(...) → provider reference (raises ChannelDeliveryFailure)
    async close()

Gateways are built once per process (see core.container). Capturing
failures into outcomes is the dispatcher's job.
"""

from backend.app.emergency.channels.email_alert import EmailGateway
from backend.app.emergency.channels.sms_gateway import SmsGateway
from backend.app.emergency.channels.web_push import PushGateway

__all__ = ["EmailGateway", "PushGateway", "SmsGateway"]
