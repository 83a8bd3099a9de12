"""
Event Broker Abstract Base Class

Defines the real-time fan-out interface: server-to-client push of
balance changes, new orders, new reservations and promotion updates to
every connected WebSocket client.

Each API process keeps its own set of local WebSocket connections; the
concrete broker decides how a published event reaches the local sets of
all processes (directly, or through Redis pub/sub).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


# Event names pushed to clients
POINTS_UPDATED = "milkpoints-updated"
NEW_ORDER = "new-order"
NEW_RESERVATION = "new-reservation"
PROMOTION_UPDATED = "happy-updated"


@dataclass
class PublishResult:
    """Result from publishing an event."""
    success: bool
    event: str
    receivers: int = 0
    error_message: Optional[str] = None
    provider: str = "unknown"


class BaseEventBroker(ABC):
    """Abstract base class for real-time event brokers."""

    def __init__(self):
        self._connections: set[WebSocket] = set()

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @property
    def connection_count(self) -> int:
        """Number of WebSocket clients connected to this process."""
        return len(self._connections)

    async def start(self) -> None:
        """Acquire resources. Called once from the application lifespan."""
        logger.info(f"Event broker started ({self.provider_name})")

    async def close(self) -> None:
        """Release resources and forget local connections."""
        self._connections.clear()
        logger.info(f"Event broker closed ({self.provider_name})")

    async def register(self, websocket: WebSocket) -> None:
        """Accept a WebSocket and start delivering events to it."""
        await websocket.accept()
        self._connections.add(websocket)
        logger.debug(f"WebSocket registered ({self.connection_count} connected)")

    def unregister(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)
        logger.debug(f"WebSocket unregistered ({self.connection_count} connected)")

    @staticmethod
    def build_message(event: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Envelope sent to clients."""
        return {
            "event": event,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def deliver_local(self, message: dict[str, Any]) -> int:
        """
        Send a message to every local connection.

        Connections whose send fails are dropped.

        Returns:
            Number of connections the message was sent to
        """
        delivered = 0
        dead = []
        for websocket in list(self._connections):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping WebSocket after failed send: {e}")
                dead.append(websocket)

        for websocket in dead:
            self.unregister(websocket)

        return delivered

    @abstractmethod
    async def publish(self, event: str, payload: dict[str, Any]) -> PublishResult:
        """
        Publish an event to all connected clients.

        Never raises; failures are reported in the result.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check broker connectivity."""
        pass
