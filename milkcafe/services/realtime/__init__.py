"""
Event Broker Factory

Returns the in-memory or Redis event broker based on ENV_MODE.
The instance is process-wide: the application lifespan starts and closes
it, and request handlers receive it through ``Depends(get_event_broker)``.
"""

import logging
from functools import lru_cache

from milkcafe.core.config import get_settings
from milkcafe.services.realtime.base import (
    BaseEventBroker,
    PublishResult,
    POINTS_UPDATED,
    NEW_ORDER,
    NEW_RESERVATION,
    PROMOTION_UPDATED,
)
from milkcafe.services.realtime.memory import InMemoryEventBroker
from milkcafe.services.realtime.redis import RedisEventBroker

logger = logging.getLogger(__name__)


@lru_cache()
def get_event_broker() -> BaseEventBroker:
    """Get the configured event broker."""
    settings = get_settings()

    if settings.use_real_services:
        logger.info(f"Event Broker: Using RedisEventBroker ({settings.env_mode.value} mode)")
        return RedisEventBroker(
            redis_url=settings.redis_url,
            channel=settings.realtime_channel,
        )
    else:
        logger.info("Event Broker: Using InMemoryEventBroker (development mode)")
        return InMemoryEventBroker()


def reset_event_broker() -> None:
    """Clear the cached broker instance."""
    get_event_broker.cache_clear()


__all__ = [
    "get_event_broker",
    "reset_event_broker",
    "BaseEventBroker",
    "InMemoryEventBroker",
    "RedisEventBroker",
    "PublishResult",
    "POINTS_UPDATED",
    "NEW_ORDER",
    "NEW_RESERVATION",
    "PROMOTION_UPDATED",
]
