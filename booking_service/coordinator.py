"""
Booking creation.

One attempt runs as a two-step saga:

1. validate, advisory availability check, resolve vehicle and price
2. under the vehicle lock: re-check availability and insert the booking as
   (pending, pending), commit
3. create the payment intent (no transaction open)
4. store the intent reference, payment status -> awaiting_payment

If 3 or 4 fails the pending row is deleted again and the failure surfaces as
PaymentGatewayError. An intent already created at the gateway is not voided.
Rows left behind by a crash between 2 and 4 are swept by BookingReconciler.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from .availability import AvailabilityChecker
from .catalog import VehicleCatalog, VehicleInfo
from .db import format_timestamp, normalize_timestamp, utcnow
from .errors import (
    AuthorizationError,
    AvailabilityConflictError,
    BookingError,
    ConcurrentModificationError,
    PaymentGatewayError,
    ValidationError,
)
from .events import BOOKING_CREATED
from .locks import VehicleLocks
from .models import BookingStatus, PaymentStatus
from .payments import PaymentGatewayClient, RedirectUrls
from .pricing import compute_cost, to_minor_units
from .publisher import publish_event
from .store import BookingStore

logger = logging.getLogger(__name__)

MISSING_FIELDS = (
    "Missing required booking fields: vehicle_id, user_id, start_time, "
    "end_time, payment_method_type."
)


@dataclass(frozen=True)
class BookingReceipt:
    booking_id: int
    vehicle_id: int
    user_id: int
    start_time: str
    end_time: str
    total_cost: Decimal
    booking_status: str
    payment_status: str
    payment_intent_id: str
    payment_redirect_url: Optional[str] = None


@dataclass(frozen=True)
class AvailabilityQuote:
    vehicle_id: int
    start_time: str
    end_time: str
    available: bool
    total_cost: Decimal


class BookingTransactionCoordinator:
    def __init__(
        self,
        store: BookingStore,
        catalog: VehicleCatalog,
        payments: PaymentGatewayClient,
        redirect: RedirectUrls,
        currency: str,
        locks: Optional[VehicleLocks] = None,
        clock: Callable[[], datetime] = utcnow,
        publisher=None,
    ):
        self._store = store
        self._catalog = catalog
        self._payments = payments
        self._redirect = redirect
        self._currency = currency
        self._locks = locks or VehicleLocks()
        self._clock = clock
        self._publisher = publisher
        self._availability = AvailabilityChecker(store)

    async def create_booking(
        self,
        vehicle_id: int,
        user_id: int,
        start_time: datetime,
        end_time: datetime,
        payment_method_type: str,
    ) -> BookingReceipt:
        start, end = self._validate(vehicle_id, user_id, start_time, end_time)
        if not payment_method_type:
            raise ValidationError(MISSING_FIELDS)

        async with self._store.read() as session:
            available = await self._availability.is_available(session, vehicle_id, start, end)
            if not available:
                logger.info("vehicle %s unavailable for %s - %s", vehicle_id, start, end)
                raise AvailabilityConflictError("Vehicle is not available for the selected dates.")
            vehicle = await self._catalog.get_by_id(session, vehicle_id)

        if vehicle.owner_id == user_id:
            raise AuthorizationError("You cannot book your own vehicle.")

        total_cost = compute_cost(vehicle, start, end)
        booking_id = await self._insert_pending(vehicle_id, user_id, start, end, total_cost)

        try:
            intent = await self._payments.create_payment_intent(
                to_minor_units(total_cost),
                self._currency,
                self._describe(vehicle),
                payment_method_type,
                self._redirect,
                {"booking_id": booking_id, "user_id": user_id},
            )
            async with self._store.transaction() as session:
                affected = await self._store.update_payment_reference(
                    session, booking_id, intent.intent_id, PaymentStatus.AWAITING_PAYMENT
                )
                if affected == 0:
                    raise ConcurrentModificationError(
                        f"Booking {booking_id} changed before its payment reference was stored."
                    )
        except Exception as exc:
            logger.error(
                "payment step failed for booking %s (vehicle %s, user %s): %s",
                booking_id,
                vehicle_id,
                user_id,
                exc,
            )
            await self._release(booking_id)
            if isinstance(exc, PaymentGatewayError):
                raise
            detail = exc.message if isinstance(exc, BookingError) else str(exc)
            raise PaymentGatewayError(
                "Payment intent creation or booking update failed.", detail
            ) from exc

        logger.info("booking %s created for vehicle %s, intent %s", booking_id, vehicle_id, intent.intent_id)
        await publish_event(
            self._publisher,
            BOOKING_CREATED,
            {
                "booking_id": booking_id,
                "vehicle_id": vehicle_id,
                "user_id": user_id,
                "start_time": format_timestamp(start),
                "end_time": format_timestamp(end),
                "total_cost": str(total_cost),
            },
        )

        return BookingReceipt(
            booking_id=booking_id,
            vehicle_id=vehicle_id,
            user_id=user_id,
            start_time=format_timestamp(start),
            end_time=format_timestamp(end),
            total_cost=total_cost,
            booking_status=BookingStatus.PENDING.value,
            payment_status=PaymentStatus.AWAITING_PAYMENT.value,
            payment_intent_id=intent.intent_id,
            payment_redirect_url=intent.redirect_url,
        )

    async def quote(
        self,
        vehicle_id: int,
        user_id: int,
        start_time: datetime,
        end_time: datetime,
    ) -> AvailabilityQuote:
        """Read-only availability and price; reserves nothing."""
        start, end = self._validate(vehicle_id, user_id, start_time, end_time)

        async with self._store.read() as session:
            vehicle = await self._catalog.get_by_id(session, vehicle_id)
            if vehicle.owner_id == user_id:
                raise AuthorizationError("You cannot book your own vehicle.")
            available = await self._availability.is_available(session, vehicle_id, start, end)

        return AvailabilityQuote(
            vehicle_id=vehicle_id,
            start_time=format_timestamp(start),
            end_time=format_timestamp(end),
            available=available,
            total_cost=compute_cost(vehicle, start, end),
        )

    def _validate(self, vehicle_id, user_id, start_time, end_time):
        if not vehicle_id or not user_id or start_time is None or end_time is None:
            raise ValidationError(MISSING_FIELDS)

        start = normalize_timestamp(start_time)
        end = normalize_timestamp(end_time)
        if start >= end:
            raise ValidationError("Invalid date range for booking. Start date must be before end date.")
        if start < self._clock():
            raise ValidationError("Start date cannot be in the past.")
        return start, end

    async def _insert_pending(self, vehicle_id, user_id, start, end, total_cost) -> int:
        async with self._locks.hold(vehicle_id):
            async with self._store.transaction() as session:
                await self._store.lock_vehicle(session, vehicle_id)
                if not await self._availability.is_available(session, vehicle_id, start, end):
                    logger.info("vehicle %s taken concurrently for %s - %s", vehicle_id, start, end)
                    raise AvailabilityConflictError("Vehicle is not available for the selected dates.")
                return await self._store.insert_pending(
                    session, vehicle_id, user_id, start, end, total_cost
                )

    async def _release(self, booking_id: int) -> None:
        try:
            async with self._store.transaction() as session:
                await self._store.delete_unpaid_pending(session, booking_id)
        except BookingError:
            # left as (pending, pending); the reconciler cancels it after the timeout
            logger.exception("could not release pending booking %s", booking_id)

    def _describe(self, vehicle: VehicleInfo) -> str:
        return f"Booking for Vehicle {vehicle.make} {vehicle.model} (ID: {vehicle.vehicle_id})"
