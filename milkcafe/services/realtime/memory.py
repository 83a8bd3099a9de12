"""
In-Memory Event Broker

Development broker: events go straight to the WebSocket clients of the
current process. Correct only when a single API process is running.
"""

import logging
from typing import Any

from milkcafe.services.realtime.base import BaseEventBroker, PublishResult

logger = logging.getLogger(__name__)


class InMemoryEventBroker(BaseEventBroker):
    """Single-process event broker."""

    @property
    def provider_name(self) -> str:
        return "memory"

    async def publish(self, event: str, payload: dict[str, Any]) -> PublishResult:
        """Deliver the event to local connections."""
        message = self.build_message(event, payload)
        delivered = await self.deliver_local(message)

        logger.debug(f"Event {event} delivered to {delivered} client(s)")

        return PublishResult(
            success=True,
            event=event,
            receivers=delivered,
            provider="memory",
        )

    async def health_check(self) -> bool:
        """In-memory broker is always healthy."""
        return True
