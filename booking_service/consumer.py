import json
import logging

import aio_pika

from .errors import BookingError, PersistenceError
from .events import PAYMENT_FAILED, PAYMENT_PAID
from .payment_status import PaymentStatusUpdater
from .rabbitmq import connect, declare_exchange

logger = logging.getLogger(__name__)

QUEUE_NAME = "booking_service_payment_events"
ROUTING_KEYS = [PAYMENT_PAID, PAYMENT_FAILED]

IDEMPOTENCY_TTL = 86400


def processed_key(event_id: str) -> str:
    return f"processed_event:{event_id}"


class PaymentEventConsumer:
    def __init__(self, updater: PaymentStatusUpdater, redis_client):
        self._updater = updater
        self._redis = redis_client

    async def handle_payload(self, payload: dict) -> bool:
        """
        Returns True when the event changed a booking. Duplicates, malformed
        events and rejected transitions return False.
        """
        event_id = payload.get("event_id")
        event_type = payload.get("event_type")
        data = payload.get("data") or {}
        intent_id = data.get("payment_intent_id")

        booking_id = data.get("booking_id")
        malformed = not event_id or event_type not in ROUTING_KEYS or not intent_id
        if booking_id is not None:
            try:
                booking_id = int(booking_id)
            except (TypeError, ValueError):
                malformed = True

        if malformed:
            logger.warning("ignoring malformed payment event: %s", payload)
            return False

        # set-if-absent claims the event for this consumer
        claimed = await self._redis.set(processed_key(event_id), "1", ex=IDEMPOTENCY_TTL, nx=True)
        if not claimed:
            return False

        try:
            await self._updater.apply(event_type, intent_id, booking_id)
        except PersistenceError:
            # release the claim so a redelivery can retry
            await self._redis.delete(processed_key(event_id))
            raise
        except BookingError as e:
            logger.warning("payment event %s not applied: %s (%s)", event_id, e.message, e.kind)
            return False
        return True

    async def handle_message(self, message: aio_pika.IncomingMessage):
        async with message.process(requeue=False):
            try:
                payload = json.loads(message.body.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.warning("dropping undecodable payment event")
                return
            await self.handle_payload(payload)

    async def start(self, rabbit_url: str | None):
        conn = await connect(rabbit_url)
        if conn is None:
            return None
        channel = await conn.channel()
        await channel.set_qos(prefetch_count=50)

        exchange = await declare_exchange(channel)
        queue = await channel.declare_queue(QUEUE_NAME, durable=True)
        for rk in ROUTING_KEYS:
            await queue.bind(exchange, routing_key=rk)

        await queue.consume(self.handle_message)
        logger.info("payment event consumer started")
        return conn
