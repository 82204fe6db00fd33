import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import AvailabilityConflictError, PersistenceError
from .models import (
    ACTIVE_STATUSES,
    Booking,
    BookingStatus,
    PaymentStatus,
    Vehicle,
)

logger = logging.getLogger(__name__)

# first key of pg_advisory_xact_lock(int, int); second key is the vehicle id
VEHICLE_LOCK_NAMESPACE = 7301
OVERLAP_CONSTRAINT = "bookings_no_overlap_per_vehicle"


def _v(status) -> str:
    return getattr(status, "value", status)


class BookingStore:
    """
    Durable booking storage. Every operation takes the session it runs in, so
    callers decide where transaction boundaries sit; ``transaction()`` and
    ``read()`` hand out scoped sessions that are always released.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._sessions = session_factory

    @asynccontextmanager
    async def transaction(self):
        async with self._sessions() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as exc:
                logger.exception("booking store transaction failed")
                raise PersistenceError("Storage operation failed") from exc

    @asynccontextmanager
    async def read(self):
        async with self._sessions() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                logger.exception("booking store read failed")
                raise PersistenceError("Storage operation failed") from exc

    # ---- locking ----

    async def lock_vehicle(self, session: AsyncSession, vehicle_id: int) -> None:
        """
        Transaction-scoped advisory lock on PostgreSQL, released on commit or
        rollback. Other dialects rely on the in-process lock alone.
        """
        if session.get_bind().dialect.name != "postgresql":
            return
        await session.execute(
            text("SELECT pg_advisory_xact_lock(:ns, :key)"),
            {"ns": VEHICLE_LOCK_NAMESPACE, "key": vehicle_id},
        )

    # ---- writes ----

    async def insert_pending(
        self,
        session: AsyncSession,
        vehicle_id: int,
        user_id: int,
        start_time: datetime,
        end_time: datetime,
        total_cost,
    ) -> int:
        booking = Booking(
            vehicle_id=vehicle_id,
            user_id=user_id,
            start_time=start_time,
            end_time=end_time,
            total_cost=total_cost,
            booking_status=BookingStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_intent_id=None,
        )
        session.add(booking)
        try:
            await session.flush()
        except IntegrityError as exc:
            if OVERLAP_CONSTRAINT in str(exc.orig):
                raise AvailabilityConflictError(
                    "Vehicle is not available for the selected dates."
                ) from exc
            raise
        return booking.id

    async def update_payment_reference(
        self,
        session: AsyncSession,
        booking_id: int,
        reference: str,
        status=PaymentStatus.AWAITING_PAYMENT,
    ) -> int:
        res = await session.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.booking_status == BookingStatus.PENDING.value,
                Booking.payment_status == PaymentStatus.PENDING.value,
            )
            .values(payment_intent_id=reference, payment_status=_v(status))
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    async def update_status_if_current(
        self,
        session: AsyncSession,
        booking_id: int,
        expected_status,
        new_status,
    ) -> int:
        res = await session.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.booking_status == _v(expected_status))
            .values(booking_status=_v(new_status))
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    async def update_payment_status_if_current(
        self,
        session: AsyncSession,
        booking_id: int,
        expected_booking_status,
        expected_payment_status,
        new_booking_status,
        new_payment_status,
    ) -> int:
        res = await session.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.booking_status == _v(expected_booking_status),
                Booking.payment_status == _v(expected_payment_status),
            )
            .values(
                booking_status=_v(new_booking_status),
                payment_status=_v(new_payment_status),
            )
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    async def delete_unpaid_pending(self, session: AsyncSession, booking_id: int) -> int:
        res = await session.execute(
            delete(Booking)
            .where(
                Booking.id == booking_id,
                Booking.booking_status == BookingStatus.PENDING.value,
                Booking.payment_status == PaymentStatus.PENDING.value,
            )
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    # ---- reads ----

    async def select_overlapping(
        self,
        session: AsyncSession,
        vehicle_id: int,
        start_time: datetime,
        end_time: datetime,
        statuses: Iterable = ACTIVE_STATUSES,
    ) -> List[Booking]:
        res = await session.execute(
            select(Booking).where(
                Booking.vehicle_id == vehicle_id,
                Booking.booking_status.in_([_v(s) for s in statuses]),
                Booking.start_time < end_time,
                Booking.end_time > start_time,
            )
        )
        return list(res.scalars().all())

    async def select_by_id(self, session: AsyncSession, booking_id: int) -> Optional[Booking]:
        res = await session.execute(select(Booking).where(Booking.id == booking_id))
        return res.scalar_one_or_none()

    async def select_with_vehicle(
        self, session: AsyncSession, booking_id: int
    ) -> Optional[Tuple[Booking, Vehicle]]:
        res = await session.execute(
            select(Booking, Vehicle)
            .join(Vehicle, Booking.vehicle_id == Vehicle.id)
            .where(Booking.id == booking_id)
        )
        row = res.first()
        return (row[0], row[1]) if row else None

    async def select_by_vehicle(
        self, session: AsyncSession, vehicle_id: int, statuses: Iterable = ACTIVE_STATUSES
    ) -> List[Booking]:
        res = await session.execute(
            select(Booking)
            .where(
                Booking.vehicle_id == vehicle_id,
                Booking.booking_status.in_([_v(s) for s in statuses]),
            )
            .order_by(Booking.start_time, Booking.id)
        )
        return list(res.scalars().all())

    async def select_owned(
        self, session: AsyncSession, booking_id: int, user_id: int
    ) -> Optional[Booking]:
        res = await session.execute(
            select(Booking).where(Booking.id == booking_id, Booking.user_id == user_id)
        )
        return res.scalar_one_or_none()

    async def select_by_payment_reference(
        self, session: AsyncSession, reference: str
    ) -> Optional[Booking]:
        res = await session.execute(
            select(Booking).where(Booking.payment_intent_id == reference)
        )
        return res.scalar_one_or_none()

    async def select_by_user(self, session: AsyncSession, user_id: int) -> List[Booking]:
        res = await session.execute(
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.start_time.desc(), Booking.id.desc())
        )
        return list(res.scalars().all())

    async def select_by_owner(
        self, session: AsyncSession, owner_id: int
    ) -> List[Tuple[Booking, Vehicle]]:
        res = await session.execute(
            select(Booking, Vehicle)
            .join(Vehicle, Booking.vehicle_id == Vehicle.id)
            .where(Vehicle.owner_id == owner_id)
            .order_by(Booking.start_time.desc(), Booking.id.desc())
        )
        return [(booking, vehicle) for booking, vehicle in res.all()]

    async def select_stale_pending(
        self, session: AsyncSession, cutoff: datetime, limit: int = 50
    ) -> List[Booking]:
        res = await session.execute(
            select(Booking)
            .where(
                Booking.booking_status == BookingStatus.PENDING.value,
                Booking.payment_status == PaymentStatus.PENDING.value,
                Booking.created_at < cutoff,
            )
            .order_by(Booking.created_at)
            .limit(limit)
        )
        return list(res.scalars().all())

    async def select_finished_confirmed(
        self, session: AsyncSession, now: datetime, limit: int = 50
    ) -> List[Booking]:
        res = await session.execute(
            select(Booking)
            .where(
                Booking.booking_status == BookingStatus.CONFIRMED.value,
                Booking.end_time <= now,
            )
            .order_by(Booking.end_time)
            .limit(limit)
        )
        return list(res.scalars().all())
