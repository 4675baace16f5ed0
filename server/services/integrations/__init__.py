"""Integration invoker - uniform boundary for side-effecting node subtypes.

Modules:
- email.py: Email delivery
- webhook.py: Outbound HTTP calls (httpx)
- database.py: Database operations
- slack.py: Chat notifications

Handlers share one signature, `async def handler(config, data) -> dict`, and
are looked up by node subtype. New integrations are added with
IntegrationRegistry.register instead of editing a dispatch function.
"""

from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TYPE_CHECKING

from core.logging import get_logger
from services.execution.exceptions import IntegrationNotFoundError

from .email import handle_email
from .webhook import handle_webhook
from .database import handle_database
from .slack import handle_slack

if TYPE_CHECKING:
    import httpx
    from core.config import Settings

logger = get_logger(__name__)

IntegrationHandler = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Dict[str, Any]]]


class IntegrationInvoker(Protocol):
    """Protocol for integration invokers (enables duck typing)."""

    def supports(self, subtype: str) -> bool:
        ...

    async def invoke(self, subtype: str, config: Dict[str, Any],
                     data: Dict[str, Any]) -> Dict[str, Any]:
        ...


class IntegrationRegistry:
    """Subtype -> handler map implementing IntegrationInvoker."""

    def __init__(self, handlers: Optional[Dict[str, IntegrationHandler]] = None):
        self._handlers: Dict[str, IntegrationHandler] = dict(handlers or {})

    def register(self, subtype: str, handler: IntegrationHandler) -> None:
        if subtype in self._handlers:
            logger.info("Replacing integration handler", subtype=subtype)
        self._handlers[subtype] = handler

    def unregister(self, subtype: str) -> bool:
        return self._handlers.pop(subtype, None) is not None

    def supports(self, subtype: str) -> bool:
        return subtype in self._handlers

    @property
    def subtypes(self) -> List[str]:
        return sorted(self._handlers)

    async def invoke(self, subtype: str, config: Dict[str, Any],
                     data: Dict[str, Any]) -> Dict[str, Any]:
        """Run the handler registered for subtype.

        Raises:
            IntegrationNotFoundError: If nothing is registered for subtype
        """
        handler = self._handlers.get(subtype)
        if handler is None:
            raise IntegrationNotFoundError(subtype)
        return await handler(config, data)


def create_default_registry(settings: "Settings",
                            http_client: Optional["httpx.AsyncClient"] = None) -> IntegrationRegistry:
    """Registry with the built-in email, webhook, database and slack handlers."""
    return IntegrationRegistry({
        'email': partial(handle_email, default_service=settings.email_service),
        'webhook': partial(handle_webhook, timeout=settings.webhook_timeout, client=http_client),
        'database': handle_database,
        'slack': partial(handle_slack, default_username=settings.slack_default_username),
    })


__all__ = [
    "IntegrationHandler",
    "IntegrationInvoker",
    "IntegrationRegistry",
    "create_default_registry",
    "handle_email",
    "handle_webhook",
    "handle_database",
    "handle_slack",
]
