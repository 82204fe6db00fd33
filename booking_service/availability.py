from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from .models import ACTIVE_STATUSES
from .store import BookingStore


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


class AvailabilityChecker:
    """
    Interval conflict test against active bookings. Callers validate
    ``start < end`` beforehand. The answer is only binding when asked inside
    the transaction that performs the insert, under the vehicle lock.
    """

    def __init__(self, store: BookingStore):
        self._store = store

    async def is_available(
        self,
        session: AsyncSession,
        vehicle_id: int,
        start: datetime,
        end: datetime,
    ) -> bool:
        conflicts = await self._store.select_overlapping(
            session, vehicle_id, start, end, ACTIVE_STATUSES
        )
        return len(conflicts) == 0
