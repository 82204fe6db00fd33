import logging

from .errors import ConcurrentModificationError, NotFoundError, ValidationError
from .events import (
    BOOKING_CONFIRMED,
    BOOKING_PAYMENT_FAILED,
    PAYMENT_FAILED,
    PAYMENT_PAID,
)
from .models import BookingStatus, PaymentStatus
from .publisher import publish_event
from .store import BookingStore

logger = logging.getLogger(__name__)

# gateway event -> (booking status, payment status, event published after commit)
TRANSITIONS = {
    PAYMENT_PAID: (BookingStatus.CONFIRMED, PaymentStatus.PAID, BOOKING_CONFIRMED),
    PAYMENT_FAILED: (BookingStatus.CANCELLED, PaymentStatus.FAILED, BOOKING_PAYMENT_FAILED),
}


class PaymentStatusUpdater:
    """
    Applies gateway payment outcomes to bookings awaiting payment.
    Only (pending, awaiting_payment) bookings move; anything else is a lost
    race and is reported, never overwritten.
    """

    def __init__(self, store: BookingStore, publisher=None):
        self._store = store
        self._publisher = publisher

    async def apply(self, event_type: str, intent_id: str, booking_id: int | None = None) -> int:
        if event_type not in TRANSITIONS:
            raise ValidationError(f"Unsupported payment event: {event_type}")
        booking_status, payment_status, published = TRANSITIONS[event_type]

        async with self._store.transaction() as session:
            booking = await self._store.select_by_payment_reference(session, intent_id)
            if not booking:
                raise NotFoundError(f"No booking references payment intent {intent_id}.")
            if booking_id is not None and booking.id != booking_id:
                raise ValidationError(
                    f"Payment intent {intent_id} belongs to booking {booking.id}, not {booking_id}."
                )

            affected = await self._store.update_payment_status_if_current(
                session,
                booking.id,
                BookingStatus.PENDING,
                PaymentStatus.AWAITING_PAYMENT,
                booking_status,
                payment_status,
            )
            if affected == 0:
                raise ConcurrentModificationError(
                    f"Booking {booking.id} is {booking.booking_status}/{booking.payment_status}; "
                    f"cannot apply {event_type}."
                )
            booking_id = booking.id
            vehicle_id = booking.vehicle_id

        logger.info("booking %s -> %s/%s via %s", booking_id, booking_status.value, payment_status.value, event_type)
        await publish_event(
            self._publisher,
            published,
            {"booking_id": booking_id, "vehicle_id": vehicle_id, "payment_intent_id": intent_id},
        )
        return booking_id
