import asyncio
import json
from datetime import datetime, timedelta
from decimal import Decimal

import fakeredis.aioredis
import pytest
import pytest_asyncio

from booking_service.cancellation import CancellationPolicyEnforcer
from booking_service.catalog import VehicleCatalog
from booking_service.coordinator import BookingTransactionCoordinator
from booking_service.db import Base, get_engine, get_session
from booking_service.errors import PaymentGatewayError
from booking_service.locks import VehicleLocks
from booking_service.models import Booking, Vehicle
from booking_service.payment_status import PaymentStatusUpdater
from booking_service.payments import PaymentIntent, RedirectUrls
from booking_service.queries import BookingQueryService
from booking_service.reconciliation import BookingReconciler
from booking_service.services import BookingServices
from booking_service.store import BookingStore

NOW = datetime(2025, 5, 1, 0, 0, 0)

OWNER_ID = 100
OTHER_OWNER_ID = 101
RENTER_ID = 7

DAILY_VEHICLE = 1
HOURLY_VEHICLE = 2
UNPRICED_VEHICLE = 3
OTHER_OWNER_VEHICLE = 4

REDIRECT = RedirectUrls(
    success="https://app.example/payment-success",
    failure="https://app.example/payment-failure",
)


class FakeGateway:
    def __init__(self):
        self.calls: list[dict] = []
        self.fail_with: Exception | None = None
        self.on_call = None

    async def create_payment_intent(
        self, amount_minor, currency, description, payment_method_type, redirect, metadata
    ):
        self.calls.append(
            {
                "amount_minor": amount_minor,
                "currency": currency,
                "description": description,
                "payment_method_type": payment_method_type,
                "redirect": redirect,
                "metadata": metadata,
            }
        )
        if self.on_call:
            await self.on_call(metadata)
        # yield so concurrent attempts interleave here
        await asyncio.sleep(0)
        if self.fail_with:
            raise self.fail_with
        n = len(self.calls)
        return PaymentIntent(
            intent_id=f"pi_{n}",
            status="awaiting_payment_method",
            redirect_url=f"https://pay.example/redirect/{n}",
        )


class FakePublisher:
    enabled = True

    def __init__(self):
        self.published: list[tuple[str, dict]] = []

    async def publish(self, routing_key: str, body: str):
        self.published.append((routing_key, json.loads(body)))

    def types(self) -> list[str]:
        return [rk for rk, _ in self.published]

    async def start(self):
        return None

    async def close(self):
        return None


def gateway_down() -> PaymentGatewayError:
    return PaymentGatewayError("Payment intent request failed: card declined", "card declined")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def store(engine):
    store = BookingStore(get_session(engine))
    async with store.transaction() as session:
        session.add_all(
            [
                Vehicle(id=DAILY_VEHICLE, owner_id=OWNER_ID, make="Toyota", model="Vios", year=2021,
                        daily_rate=Decimal("1500.00")),
                Vehicle(id=HOURLY_VEHICLE, owner_id=OWNER_ID, make="Honda", model="Click", year=2022,
                        hourly_rate=Decimal("100.00")),
                Vehicle(id=UNPRICED_VEHICLE, owner_id=OWNER_ID, make="Ford", model="Ranger"),
                Vehicle(id=OTHER_OWNER_VEHICLE, owner_id=OTHER_OWNER_ID, make="Mitsubishi", model="Mirage",
                        daily_rate=Decimal("900.00")),
            ]
        )
    return store


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def coordinator(store, gateway, publisher, clock):
    return BookingTransactionCoordinator(
        store,
        VehicleCatalog(),
        gateway,
        REDIRECT,
        "PHP",
        locks=VehicleLocks(),
        clock=clock,
        publisher=publisher,
    )


@pytest.fixture
def enforcer(store, publisher, clock):
    return CancellationPolicyEnforcer(store, clock=clock, publisher=publisher)


@pytest.fixture
def redis_client():
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def services(store, coordinator, enforcer, publisher):
    payment_status = PaymentStatusUpdater(store, publisher=publisher)
    return BookingServices(
        store=store,
        coordinator=coordinator,
        cancellation=enforcer,
        queries=BookingQueryService(store),
        payment_status=payment_status,
        reconciler=BookingReconciler(store, pending_timeout=timedelta(minutes=15), publisher=publisher),
        publisher=publisher,
    )


async def add_booking(
    store: BookingStore,
    start: datetime,
    end: datetime,
    vehicle_id: int = DAILY_VEHICLE,
    user_id: int = RENTER_ID,
    booking_status: str = "pending",
    payment_status: str = "awaiting_payment",
    payment_intent_id: str | None = None,
    created_at: datetime | None = None,
    total_cost: Decimal = Decimal("1500.00"),
) -> int:
    booking = Booking(
        vehicle_id=vehicle_id,
        user_id=user_id,
        start_time=start,
        end_time=end,
        total_cost=total_cost,
        booking_status=booking_status,
        payment_status=payment_status,
        payment_intent_id=payment_intent_id,
    )
    if created_at is not None:
        booking.created_at = created_at
    async with store.transaction() as session:
        session.add(booking)
        await session.flush()
        return booking.id


async def fetch(store: BookingStore, booking_id: int):
    async with store.read() as session:
        return await store.select_by_id(session, booking_id)
