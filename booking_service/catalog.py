from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import NotFoundError
from .models import Vehicle


@dataclass(frozen=True)
class VehicleInfo:
    vehicle_id: int
    owner_id: int
    make: str
    model: str
    year: Optional[int] = None
    daily_rate: Optional[Decimal] = None
    hourly_rate: Optional[Decimal] = None


def to_vehicle_info(vehicle: Vehicle) -> VehicleInfo:
    return VehicleInfo(
        vehicle_id=vehicle.id,
        owner_id=vehicle.owner_id,
        make=vehicle.make,
        model=vehicle.model,
        year=vehicle.year,
        daily_rate=vehicle.daily_rate,
        hourly_rate=vehicle.hourly_rate,
    )


class VehicleCatalog:
    """Read-only view of the vehicle listings owned by the catalog service."""

    async def get_by_id(self, session: AsyncSession, vehicle_id: int) -> VehicleInfo:
        res = await session.execute(select(Vehicle).where(Vehicle.id == vehicle_id))
        vehicle = res.scalar_one_or_none()
        if not vehicle:
            raise NotFoundError(f"Vehicle {vehicle_id} not found.")
        return to_vehicle_info(vehicle)
