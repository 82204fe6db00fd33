import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from .db import utcnow
from .errors import BookingError
from .events import BOOKING_COMPLETED, BOOKING_EXPIRED
from .models import BookingStatus, PaymentStatus
from .publisher import publish_event
from .store import BookingStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 50


class BookingReconciler:
    """
    Background sweep for the gaps the booking saga leaves open:
    bookings stuck in (pending, pending) past the timeout are cancelled,
    confirmed bookings whose end time has passed are completed.
    """

    def __init__(
        self,
        store: BookingStore,
        pending_timeout: timedelta,
        clock: Callable[[], datetime] = utcnow,
        publisher=None,
    ):
        self._store = store
        self._pending_timeout = pending_timeout
        self._clock = clock
        self._publisher = publisher

    async def expire_stale_pending(self, now: datetime | None = None) -> list[int]:
        now = now or self._clock()
        expired = []
        async with self._store.transaction() as session:
            stale = await self._store.select_stale_pending(
                session, now - self._pending_timeout, BATCH_SIZE
            )
            for booking in stale:
                # a concurrent payment update wins; zero rows means skip
                affected = await self._store.update_payment_status_if_current(
                    session,
                    booking.id,
                    BookingStatus.PENDING,
                    PaymentStatus.PENDING,
                    BookingStatus.CANCELLED,
                    PaymentStatus.PENDING,
                )
                if affected:
                    expired.append(booking.id)

        for booking_id in expired:
            logger.warning("booking %s expired without a payment intent", booking_id)
            await publish_event(self._publisher, BOOKING_EXPIRED, {"booking_id": booking_id})
        return expired

    async def complete_finished(self, now: datetime | None = None) -> list[int]:
        now = now or self._clock()
        completed = []
        async with self._store.transaction() as session:
            finished = await self._store.select_finished_confirmed(session, now, BATCH_SIZE)
            for booking in finished:
                affected = await self._store.update_status_if_current(
                    session, booking.id, BookingStatus.CONFIRMED, BookingStatus.COMPLETED
                )
                if affected:
                    completed.append(booking.id)

        for booking_id in completed:
            await publish_event(self._publisher, BOOKING_COMPLETED, {"booking_id": booking_id})
        return completed

    async def sweep(self, now: datetime | None = None) -> dict:
        now = now or self._clock()
        return {
            "expired": await self.expire_stale_pending(now),
            "completed": await self.complete_finished(now),
        }

    async def run(self, stop_event: asyncio.Event, interval_seconds: float):
        while not stop_event.is_set():
            try:
                await self.sweep()
            except BookingError:
                logger.exception("booking reconciliation sweep failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                continue
