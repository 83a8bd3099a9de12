"""
Redis Event Broker

Production broker using Redis pub/sub so that every API process fans out
the same events. Publishing only writes to the channel; each process
(including the publisher) receives the message through its subscription
task and delivers it to its own WebSocket clients.

When the subscription connection drops, the listener re-subscribes with
exponential backoff. Until it is listening again the broker reports itself
unhealthy.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from milkcafe.services.realtime.base import BaseEventBroker, PublishResult

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 1.0
MAX_RECONNECT_DELAY_SECONDS = 30.0


class RedisEventBroker(BaseEventBroker):
    """Multi-process event broker backed by a Redis channel."""

    def __init__(
        self,
        redis_url: str,
        channel: str,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        max_reconnect_delay: float = MAX_RECONNECT_DELAY_SECONDS,
    ):
        super().__init__()
        self.redis_url = redis_url
        self.channel = channel
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.redis_client: Optional[redis.Redis] = None
        self.pubsub: Optional[redis.client.PubSub] = None
        self._subscription_task: Optional[asyncio.Task] = None
        self._listening = False

    @property
    def provider_name(self) -> str:
        return "redis"

    async def start(self) -> None:
        """Connect, subscribe to the channel and start the listener task."""
        self.redis_client = redis.from_url(self.redis_url, decode_responses=True)
        await self.redis_client.ping()

        await self._subscribe()
        self._subscription_task = asyncio.create_task(self._handle_subscriptions())

    async def close(self) -> None:
        """Stop the listener and close Redis connections."""
        if self._subscription_task:
            self._subscription_task.cancel()
            try:
                await self._subscription_task
            except asyncio.CancelledError:
                pass
            self._subscription_task = None

        if self.pubsub:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
            self.pubsub = None
        self._listening = False

        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

        await super().close()

    async def publish(self, event: str, payload: dict[str, Any]) -> PublishResult:
        """Publish the event on the Redis channel."""
        if self.redis_client is None:
            logger.error(f"Cannot publish {event}: Redis broker not started")
            return PublishResult(
                success=False,
                event=event,
                error_message="Broker not started",
                provider="redis",
            )

        message = self.build_message(event, payload)
        try:
            receivers = await self.redis_client.publish(self.channel, json.dumps(message, default=str))
        except RedisError as e:
            logger.error(f"Redis publish of {event} failed: {e}")
            return PublishResult(
                success=False,
                event=event,
                error_message=str(e),
                provider="redis",
            )

        logger.debug(f"Event {event} published to {receivers} subscriber(s)")
        return PublishResult(
            success=True,
            event=event,
            receivers=receivers,
            provider="redis",
        )

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    async def _subscribe(self) -> None:
        self.pubsub = self.redis_client.pubsub()
        await self.pubsub.subscribe(self.channel)
        self._listening = True
        logger.info(f"Redis event broker subscribed to '{self.channel}'")

    async def _drop_subscription(self) -> None:
        """Forget a broken pub/sub connection."""
        self._listening = False
        pubsub, self.pubsub = self.pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except RedisError as e:
            logger.debug(f"Ignoring error while closing broken pub/sub: {e}")

    async def _handle_subscriptions(self) -> None:
        """Deliver channel messages to local connections, re-subscribing on failure."""
        delay = self.reconnect_delay
        while True:
            try:
                if self.pubsub is None:
                    await self._subscribe()
                async for message in self.pubsub.listen():
                    delay = self.reconnect_delay
                    if message["type"] == "message":
                        await self._process_broadcast_message(message["data"])
                logger.warning(f"Subscription to '{self.channel}' ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Subscription to '{self.channel}' lost: {e}; retrying in {delay}s")

            await self._drop_subscription()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

    async def _process_broadcast_message(self, data: str) -> int:
        try:
            message = json.loads(data)
        except ValueError as e:
            logger.error(f"Ignoring malformed broadcast message: {e}")
            return 0
        return await self.deliver_local(message)

    async def health_check(self) -> bool:
        """Ping Redis and check the listener is subscribed."""
        if self.redis_client is None:
            return False
        if self._subscription_task is not None:
            if self._subscription_task.done() or not self._listening:
                return False
        try:
            return bool(await self.redis_client.ping())
        except RedisError:
            return False
