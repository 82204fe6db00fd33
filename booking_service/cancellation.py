import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from .db import utcnow
from .errors import (
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    PolicyViolationError,
)
from .events import BOOKING_CANCELLED
from .models import Booking, BookingStatus, TERMINAL_STATUSES
from .publisher import publish_event
from .store import BookingStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class CancellationAck:
    booking_id: int
    booking_status: str
    message: str = "Booking cancelled successfully."


def check_cancellable(booking: Booking, now: datetime, window: timedelta = DEFAULT_WINDOW) -> None:
    if booking.booking_status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Booking is already {booking.booking_status} and cannot be cancelled."
        )
    if booking.start_time - now <= window:
        hours = int(window.total_seconds() // 3600)
        raise PolicyViolationError(
            f"Bookings cannot be cancelled within {hours} hours of the start date."
        )


class CancellationPolicyEnforcer:
    def __init__(
        self,
        store: BookingStore,
        window: timedelta = DEFAULT_WINDOW,
        clock: Callable[[], datetime] = utcnow,
        publisher=None,
    ):
        self._store = store
        self._window = window
        self._clock = clock
        self._publisher = publisher

    async def cancel(self, booking_id: int, requesting_user_id: int) -> CancellationAck:
        async with self._store.transaction() as session:
            # existence and ownership in one lookup: non-owners see "not found"
            booking = await self._store.select_owned(session, booking_id, requesting_user_id)
            if not booking:
                raise NotFoundError(
                    "Booking not found or you are not authorized to cancel it."
                )

            check_cancellable(booking, self._clock(), self._window)

            affected = await self._store.update_status_if_current(
                session, booking_id, booking.booking_status, BookingStatus.CANCELLED
            )
            if affected == 0:
                raise ConcurrentModificationError(
                    "Failed to cancel booking. It was modified concurrently."
                )
            vehicle_id = booking.vehicle_id

        logger.info("booking %s cancelled by user %s", booking_id, requesting_user_id)
        await publish_event(
            self._publisher,
            BOOKING_CANCELLED,
            {"booking_id": booking_id, "vehicle_id": vehicle_id, "user_id": requesting_user_id},
        )
        return CancellationAck(booking_id=booking_id, booking_status=BookingStatus.CANCELLED.value)
