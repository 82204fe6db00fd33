import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from booking_service.errors import (
    AuthorizationError,
    AvailabilityConflictError,
    ConfigurationError,
    NotFoundError,
    PaymentGatewayError,
    PersistenceError,
    ValidationError,
)

from conftest import (
    DAILY_VEHICLE,
    HOURLY_VEHICLE,
    NOW,
    OWNER_ID,
    RENTER_ID,
    UNPRICED_VEHICLE,
    add_booking,
    fetch,
    gateway_down,
)

UTC = timezone.utc
JUNE_1 = datetime(2025, 6, 1, tzinfo=UTC)
JUNE_2 = datetime(2025, 6, 2, tzinfo=UTC)
JUNE_3 = datetime(2025, 6, 3, tzinfo=UTC)
JUNE_4 = datetime(2025, 6, 4, tzinfo=UTC)


async def user_bookings(store, user_id=RENTER_ID):
    async with store.read() as session:
        return await store.select_by_user(session, user_id)


@pytest.mark.asyncio
async def test_booking_scenario_then_overlap_conflict(coordinator, gateway, store):
    receipt = await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "gcash")

    assert receipt.total_cost == Decimal("3000")
    assert receipt.booking_status == "pending"
    assert receipt.payment_status == "awaiting_payment"
    assert receipt.payment_intent_id == "pi_1"
    assert receipt.payment_redirect_url == "https://pay.example/redirect/1"
    assert receipt.start_time == "2025-06-01 00:00:00"
    assert receipt.end_time == "2025-06-03 00:00:00"

    booking = await fetch(store, receipt.booking_id)
    assert booking.booking_status == "pending"
    assert booking.payment_status == "awaiting_payment"
    assert booking.payment_intent_id == "pi_1"
    assert booking.total_cost == Decimal("3000")

    with pytest.raises(AvailabilityConflictError):
        await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID + 1, JUNE_2, JUNE_4, "gcash")

    assert len(gateway.calls) == 1


@pytest.mark.asyncio
async def test_payment_intent_request_contents(coordinator, gateway):
    receipt = await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "gcash")

    call = gateway.calls[0]
    assert call["amount_minor"] == 300000
    assert call["currency"] == "PHP"
    assert call["payment_method_type"] == "gcash"
    assert "Toyota Vios" in call["description"]
    assert call["metadata"] == {"booking_id": receipt.booking_id, "user_id": RENTER_ID}
    assert call["redirect"].success.endswith("/payment-success")


@pytest.mark.asyncio
async def test_hourly_vehicle_priced_by_started_hour(coordinator):
    start = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)
    receipt = await coordinator.create_booking(
        HOURLY_VEHICLE, RENTER_ID, start, start + timedelta(minutes=90), "card"
    )
    assert receipt.total_cost == Decimal("200")


@pytest.mark.asyncio
async def test_offsets_are_normalized_to_utc(coordinator, store):
    manila = timezone(timedelta(hours=8))
    receipt = await coordinator.create_booking(
        DAILY_VEHICLE,
        RENTER_ID,
        datetime(2025, 6, 1, 8, 0, 0, 123456, tzinfo=manila),
        datetime(2025, 6, 2, 8, 0, tzinfo=manila),
        "card",
    )
    assert receipt.start_time == "2025-06-01 00:00:00"
    assert receipt.end_time == "2025-06-02 00:00:00"

    booking = await fetch(store, receipt.booking_id)
    assert booking.start_time == datetime(2025, 6, 1)


@pytest.mark.asyncio
@pytest.mark.parametrize("start,end", [
    (JUNE_3, JUNE_1),
    (JUNE_1, JUNE_1),
    (datetime(2025, 4, 30, 23, 0, tzinfo=UTC), JUNE_1),
    (datetime(2025, 4, 1, tzinfo=UTC), datetime(2025, 4, 2, tzinfo=UTC)),
])
async def test_invalid_intervals_are_rejected_without_side_effects(coordinator, gateway, store, start, end):
    with pytest.raises(ValidationError):
        await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, start, end, "card")

    assert gateway.calls == []
    assert await user_bookings(store) == []


@pytest.mark.asyncio
async def test_start_exactly_now_is_allowed(coordinator):
    start = NOW.replace(tzinfo=UTC)
    receipt = await coordinator.create_booking(
        DAILY_VEHICLE, RENTER_ID, start, start + timedelta(days=1), "card"
    )
    assert receipt.total_cost == Decimal("1500")


@pytest.mark.asyncio
@pytest.mark.parametrize("vehicle_id,user_id,payment_method", [
    (None, RENTER_ID, "card"),
    (DAILY_VEHICLE, None, "card"),
    (DAILY_VEHICLE, RENTER_ID, ""),
])
async def test_missing_fields_are_rejected(coordinator, gateway, vehicle_id, user_id, payment_method):
    with pytest.raises(ValidationError):
        await coordinator.create_booking(vehicle_id, user_id, JUNE_1, JUNE_3, payment_method)
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_unknown_vehicle(coordinator, gateway):
    with pytest.raises(NotFoundError):
        await coordinator.create_booking(999, RENTER_ID, JUNE_1, JUNE_3, "card")
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_vehicle_without_rates(coordinator, gateway, store):
    with pytest.raises(ConfigurationError):
        await coordinator.create_booking(UNPRICED_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "card")
    assert gateway.calls == []
    assert await user_bookings(store) == []


@pytest.mark.asyncio
async def test_owner_cannot_book_own_vehicle(coordinator, gateway):
    with pytest.raises(AuthorizationError):
        await coordinator.create_booking(DAILY_VEHICLE, OWNER_ID, JUNE_1, JUNE_3, "card")
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_gateway_failure_leaves_no_booking(coordinator, gateway, store, publisher):
    gateway.fail_with = gateway_down()

    with pytest.raises(PaymentGatewayError) as exc_info:
        await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "card")

    assert exc_info.value.provider_detail == "card declined"
    booking_id = gateway.calls[0]["metadata"]["booking_id"]
    assert await fetch(store, booking_id) is None
    assert await user_bookings(store) == []
    assert publisher.types() == []

    # the window is free again
    gateway.fail_with = None
    receipt = await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "card")
    assert receipt.booking_status == "pending"


@pytest.mark.asyncio
async def test_unexpected_gateway_exception_is_wrapped(coordinator, gateway, store):
    gateway.fail_with = RuntimeError("socket closed")

    with pytest.raises(PaymentGatewayError) as exc_info:
        await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "card")

    assert exc_info.value.provider_detail == "socket closed"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert await user_bookings(store) == []


@pytest.mark.asyncio
async def test_reference_update_failure_leaves_no_booking(coordinator, gateway, store, monkeypatch):
    async def broken_update(*args, **kwargs):
        raise PersistenceError("Storage operation failed")

    monkeypatch.setattr(store, "update_payment_reference", broken_update)

    with pytest.raises(PaymentGatewayError) as exc_info:
        await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "card")

    assert isinstance(exc_info.value.__cause__, PersistenceError)
    booking_id = gateway.calls[0]["metadata"]["booking_id"]
    assert await fetch(store, booking_id) is None


@pytest.mark.asyncio
async def test_pending_row_holds_window_during_gateway_call(coordinator, gateway, store):
    seen = {}

    async def inspect(metadata):
        booking = await fetch(store, metadata["booking_id"])
        seen["state"] = (booking.booking_status, booking.payment_status, booking.payment_intent_id)

    gateway.on_call = inspect
    await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "card")

    assert seen["state"] == ("pending", "pending", None)


@pytest.mark.asyncio
async def test_concurrent_overlapping_requests_admit_exactly_one(coordinator, gateway, store):
    attempts = [
        coordinator.create_booking(
            DAILY_VEHICLE, RENTER_ID + i, JUNE_1 + timedelta(hours=i), JUNE_3 + timedelta(hours=i), "card"
        )
        for i in range(12)
    ]

    results = await asyncio.gather(*attempts, return_exceptions=True)

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert all(isinstance(f, AvailabilityConflictError) for f in failures)
    assert len(gateway.calls) == 1

    async with store.read() as session:
        active = await store.select_overlapping(
            session, DAILY_VEHICLE, datetime(2025, 5, 1), datetime(2025, 7, 1)
        )
    assert len(active) == 1


@pytest.mark.asyncio
async def test_concurrent_disjoint_requests_all_succeed(coordinator):
    attempts = [
        coordinator.create_booking(
            DAILY_VEHICLE, RENTER_ID, JUNE_1 + timedelta(days=i), JUNE_1 + timedelta(days=i + 1), "card"
        )
        for i in range(6)
    ]

    results = await asyncio.gather(*attempts)

    assert len({r.booking_id for r in results}) == 6
    assert all(r.total_cost == Decimal("1500") for r in results)


@pytest.mark.asyncio
async def test_cancelled_booking_frees_window(coordinator, store):
    await add_booking(store, datetime(2025, 6, 1), datetime(2025, 6, 3), booking_status="cancelled")

    receipt = await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "card")
    assert receipt.payment_status == "awaiting_payment"


@pytest.mark.asyncio
async def test_created_event_published(coordinator, publisher):
    receipt = await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "card")

    assert publisher.types() == ["booking.created"]
    _, event = publisher.published[0]
    assert event["data"]["booking_id"] == receipt.booking_id
    assert event["data"]["total_cost"] == str(receipt.total_cost)


@pytest.mark.asyncio
async def test_quote_reports_price_and_availability(coordinator):
    quote = await coordinator.quote(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3)
    assert quote.available is True
    assert quote.total_cost == Decimal("3000")

    await coordinator.create_booking(DAILY_VEHICLE, RENTER_ID, JUNE_1, JUNE_3, "card")

    quote = await coordinator.quote(DAILY_VEHICLE, RENTER_ID + 1, JUNE_2, JUNE_4)
    assert quote.available is False
    assert quote.total_cost == Decimal("3000")
