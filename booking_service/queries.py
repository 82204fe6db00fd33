from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from .catalog import VehicleCatalog
from .errors import NotFoundError
from .models import Booking, Vehicle
from .store import BookingStore


@dataclass(frozen=True)
class VehicleSummary:
    vehicle_id: int
    make: str
    model: str
    year: Optional[int]
    daily_rate: Optional[Decimal]
    hourly_rate: Optional[Decimal]


def summarize(vehicle: Vehicle) -> VehicleSummary:
    return VehicleSummary(
        vehicle_id=vehicle.id,
        make=vehicle.make,
        model=vehicle.model,
        year=vehicle.year,
        daily_rate=vehicle.daily_rate,
        hourly_rate=vehicle.hourly_rate,
    )


class BookingQueryService:
    """Read-only booking listings. Each call is one consistent read."""

    def __init__(self, store: BookingStore, catalog: Optional[VehicleCatalog] = None):
        self._store = store
        self._catalog = catalog or VehicleCatalog()

    async def list_by_user(self, user_id: int) -> List[Booking]:
        async with self._store.read() as session:
            return await self._store.select_by_user(session, user_id)

    async def list_by_owner(self, owner_id: int) -> List[Tuple[Booking, VehicleSummary]]:
        async with self._store.read() as session:
            rows = await self._store.select_by_owner(session, owner_id)
        return [(booking, summarize(vehicle)) for booking, vehicle in rows]

    async def list_by_vehicle(self, vehicle_id: int) -> List[Booking]:
        """Active bookings of one vehicle, earliest first: the intervals already taken."""
        async with self._store.read() as session:
            await self._catalog.get_by_id(session, vehicle_id)
            return await self._store.select_by_vehicle(session, vehicle_id)

    async def get_for_user(self, booking_id: int, user_id: int, is_admin: bool = False) -> Booking:
        """
        Visible to the renter, the vehicle owner and admins. Anyone else gets
        NotFoundError, so existence is not leaked.
        """
        async with self._store.read() as session:
            row = await self._store.select_with_vehicle(session, booking_id)
        if row:
            booking, vehicle = row
            if is_admin or user_id in (booking.user_id, vehicle.owner_id):
                return booking
        raise NotFoundError("Booking not found.")
