"""
Send channels for generated messages.

- SimulatedSendChannel records the message without delivering it
- ResendEmailChannel delivers email through Resend
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

import resend

from outreach_sequencer.exceptions import SendError
from outreach_sequencer.services.message_generator import GeneratedMessage
from outreach_sequencer.services.sequence_engine.message_formatter import TargetContext

logger = logging.getLogger(__name__)


@dataclass
class DeliveryReceipt:
    delivery_id: str
    channel: str


class SendChannel:
    name = 'base'

    def send(self, target_id: str, message: GeneratedMessage, context: Optional[TargetContext] = None,
             idempotency_key: Optional[str] = None) -> DeliveryReceipt:
        raise NotImplementedError


class SimulatedSendChannel(SendChannel):
    """Accepts every message; keeps the most recent ones for inspection."""
    name = 'simulated'

    def __init__(self, history_size: int = 1000):
        self.sent = deque(maxlen=history_size)

    def send(self, target_id, message, context=None, idempotency_key=None):
        delivery_id = f"simulated-{idempotency_key or target_id}"
        self.sent.append({
            'target_id': target_id,
            'subject': message.subject,
            'content': message.content,
            'delivery_id': delivery_id,
        })
        logger.info(f"Simulated delivery {delivery_id} to target {target_id}")
        return DeliveryReceipt(delivery_id=delivery_id, channel=self.name)


class ResendEmailChannel(SendChannel):
    name = 'email'

    def __init__(self, api_key: str, from_email: str):
        if not api_key:
            raise ValueError("RESEND_API_KEY is required for the email channel")
        resend.api_key = api_key
        self.from_email = from_email

    def send(self, target_id, message, context=None, idempotency_key=None):
        email = context.email if context else None
        if not email:
            raise SendError(f"Target {target_id} has no email address")

        params = {
            "from": self.from_email,
            "to": email,
            "subject": message.subject or "Following up",
            "text": message.content,
        }
        try:
            if idempotency_key:
                # Resend drops repeats of the same key for 24 hours
                response = resend.Emails.send(params, {"idempotency_key": idempotency_key})
            else:
                response = resend.Emails.send(params)
        except Exception as e:
            raise SendError(f"Resend delivery to {email} failed: {str(e)}") from e

        delivery_id = response.get('id') if isinstance(response, dict) else getattr(response, 'id', None)
        if not delivery_id:
            raise SendError(f"Resend did not return a delivery id for {email}")

        logger.info(f"Outreach email sent to {email}: {delivery_id}")
        return DeliveryReceipt(delivery_id=delivery_id, channel=self.name)


def build_send_channel(config) -> SendChannel:
    kind = config.get('SEND_CHANNEL', 'simulated')
    if kind == 'email':
        return ResendEmailChannel(
            api_key=config.get('RESEND_API_KEY'),
            from_email=config.get('OUTREACH_EMAIL_FROM'),
        )
    if kind == 'simulated':
        return SimulatedSendChannel()
    raise ValueError(f"Unknown SEND_CHANNEL '{kind}'")
