"""Slack integration handler."""

from typing import Any, Dict

from core.logging import get_logger

logger = get_logger(__name__)

PREVIEW_LENGTH = 50


async def handle_slack(config: Dict[str, Any], data: Dict[str, Any],
                       default_username: str = "Workflow Bot") -> Dict[str, Any]:
    """Post a chat notification. Delivery is simulated and logged."""
    channel = config.get('channel')
    if not channel:
        return {"success": False, "message": "Channel is required"}

    message = str(config.get('message') or '')
    preview = message[:PREVIEW_LENGTH] + ("..." if len(message) > PREVIEW_LENGTH else "")

    logger.info("Sending Slack message", channel=channel)
    return {
        "success": True,
        "message": "Slack notification sent successfully",
        "details": {
            "channel": channel,
            "username": config.get('username') or default_username,
            "messagePreview": preview,
        },
    }
