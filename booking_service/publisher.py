import logging

import aio_pika

from .events import build_event, to_json
from .rabbitmq import connect, declare_exchange

logger = logging.getLogger(__name__)


class Publisher:
    """Publishes booking events to the topic exchange. Without RABBIT_URL every call is a no-op."""

    def __init__(self, rabbit_url: str | None):
        self._rabbit_url = rabbit_url
        self._conn = None
        self._exchange = None

    @property
    def enabled(self) -> bool:
        return bool(self._rabbit_url)

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed

    async def start(self):
        if not self.enabled or self.connected:
            return
        self._conn = await connect(self._rabbit_url)
        channel = await self._conn.channel()
        self._exchange = await declare_exchange(channel)
        logger.info("event publisher connected")

    async def publish(self, routing_key: str, body: str):
        if not self.enabled:
            return
        if not self.connected:
            await self.start()
        await self._exchange.publish(
            aio_pika.Message(
                body=body.encode("utf-8"),
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            ),
            routing_key=routing_key,
        )

    async def close(self):
        if self.connected:
            await self._conn.close()
        self._conn = None
        self._exchange = None


async def publish_event(publisher, event_type: str, data: dict) -> None:
    """
    Publish after commit. The state change is already durable, so a broker
    failure is logged rather than raised.
    """
    if publisher is None:
        return
    try:
        await publisher.publish(event_type, to_json(build_event(event_type, data)))
    except Exception:
        logger.exception("failed to publish %s for %s", event_type, data)
