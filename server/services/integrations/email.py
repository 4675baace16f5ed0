"""Email integration handler."""

import random
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict

from core.logging import get_logger

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

SUPPORTED_SERVICES = frozenset(['smtp', 'gmail', 'sendgrid'])


def validate_email(address: str) -> bool:
    return bool(EMAIL_PATTERN.match(str(address or '').lower()))


async def handle_email(config: Dict[str, Any], data: Dict[str, Any],
                       default_service: str = "smtp") -> Dict[str, Any]:
    """Send an email through the configured service.

    Delivery is simulated: the message is logged and a message id is
    generated for the chosen service. Config is already interpolated.
    """
    recipient = config.get('recipient') or ''
    subject = config.get('subject') or ''
    body = config.get('body') or ''
    service = (config.get('service') or default_service).lower()
    if service not in SUPPORTED_SERVICES:
        service = default_service

    if not validate_email(recipient):
        logger.warning("Invalid recipient email address", recipient=recipient)
        return {
            "success": False,
            "message": "Invalid email address",
            "status": "failed",
            "recipient": recipient,
        }

    logger.info("Sending email", recipient=recipient, service=service,
                subject=subject, body_preview=body[:50])

    message_id = f"<{int(time.time() * 1000)}.{random.randint(0, 999999)}@{service}.example.com>"
    return {
        "success": True,
        "message": "Email sent successfully",
        "messageId": message_id,
        "recipient": recipient,
        "subject": subject,
        "service": service,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": "sent",
    }
