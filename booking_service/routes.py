import json
from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, Header, Request

from .db import format_timestamp
from .errors import AuthorizationError
from .models import Booking
from .schemas import (
    BookedIntervalResponse,
    BookingListResponse,
    BookingReceiptResponse,
    BookingResponse,
    CancelBookingResponse,
    CreateBookingRequest,
    ErrorResponse,
    OwnerBookingListResponse,
    OwnerBookingResponse,
    QuoteResponse,
    VehicleScheduleResponse,
    VehicleSummaryResponse,
)
from .services import BookingServices

router = APIRouter(
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    }
)


def get_services(request: Request) -> BookingServices:
    return request.app.state.services


def _is_admin(roles_header: str | None) -> bool:
    if not roles_header:
        return False
    try:
        roles = json.loads(roles_header)
    except ValueError:
        return False
    return isinstance(roles, list) and "admin" in roles


def _require_self_or_admin(requested_id: int, user_sub: int, roles_header: str | None):
    if requested_id != user_sub and not _is_admin(roles_header):
        raise AuthorizationError("You are not authorized to view these bookings.")


def to_booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.id,
        vehicle_id=booking.vehicle_id,
        user_id=booking.user_id,
        start_time=format_timestamp(booking.start_time),
        end_time=format_timestamp(booking.end_time),
        total_cost=booking.total_cost,
        booking_status=booking.booking_status,
        payment_status=booking.payment_status,
        payment_intent_id=booking.payment_intent_id,
        created_at=format_timestamp(booking.created_at),
        updated_at=format_timestamp(booking.updated_at),
    )


@router.post("/bookings", response_model=BookingReceiptResponse, status_code=201)
async def create_booking(
    data: CreateBookingRequest,
    x_user_sub: int = Header(...),
    services: BookingServices = Depends(get_services),
):
    receipt = await services.coordinator.create_booking(
        vehicle_id=data.vehicle_id,
        user_id=x_user_sub,
        start_time=data.start_time,
        end_time=data.end_time,
        payment_method_type=data.payment_method_type,
    )
    return BookingReceiptResponse(**asdict(receipt))


@router.get("/bookings/quote", response_model=QuoteResponse)
async def quote_booking(
    vehicle_id: int,
    start_time: datetime,
    end_time: datetime,
    x_user_sub: int = Header(...),
    services: BookingServices = Depends(get_services),
):
    quote = await services.coordinator.quote(vehicle_id, x_user_sub, start_time, end_time)
    return QuoteResponse(
        vehicle_id=quote.vehicle_id,
        start_time=quote.start_time,
        end_time=quote.end_time,
        is_available=quote.available,
        total_cost=quote.total_cost,
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    x_user_sub: int = Header(...),
    x_user_roles: str | None = Header(None),
    services: BookingServices = Depends(get_services),
):
    booking = await services.queries.get_for_user(
        booking_id, x_user_sub, is_admin=_is_admin(x_user_roles)
    )
    return to_booking_response(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=CancelBookingResponse)
async def cancel_booking(
    booking_id: int,
    x_user_sub: int = Header(...),
    services: BookingServices = Depends(get_services),
):
    ack = await services.cancellation.cancel(booking_id, x_user_sub)
    return CancelBookingResponse(
        booking_id=ack.booking_id,
        booking_status=ack.booking_status,
        message=ack.message,
    )


@router.get("/users/{user_id}/bookings", response_model=BookingListResponse)
async def list_user_bookings(
    user_id: int,
    x_user_sub: int = Header(...),
    x_user_roles: str | None = Header(None),
    services: BookingServices = Depends(get_services),
):
    _require_self_or_admin(user_id, x_user_sub, x_user_roles)
    bookings = await services.queries.list_by_user(user_id)
    return BookingListResponse(bookings=[to_booking_response(b) for b in bookings])


@router.get("/owners/{owner_id}/bookings", response_model=OwnerBookingListResponse)
async def list_owner_bookings(
    owner_id: int,
    x_user_sub: int = Header(...),
    x_user_roles: str | None = Header(None),
    services: BookingServices = Depends(get_services),
):
    _require_self_or_admin(owner_id, x_user_sub, x_user_roles)
    rows = await services.queries.list_by_owner(owner_id)
    return OwnerBookingListResponse(
        bookings=[
            OwnerBookingResponse(
                booking=to_booking_response(booking),
                vehicle=VehicleSummaryResponse(**asdict(vehicle)),
            )
            for booking, vehicle in rows
        ]
    )


@router.get("/vehicles/{vehicle_id}/bookings", response_model=VehicleScheduleResponse)
async def list_vehicle_bookings(
    vehicle_id: int,
    x_user_sub: int = Header(...),
    services: BookingServices = Depends(get_services),
):
    # intervals only; renter and payment details stay private
    bookings = await services.queries.list_by_vehicle(vehicle_id)
    return VehicleScheduleResponse(
        vehicle_id=vehicle_id,
        bookings=[
            BookedIntervalResponse(
                booking_id=b.id,
                start_time=format_timestamp(b.start_time),
                end_time=format_timestamp(b.end_time),
                booking_status=b.booking_status,
            )
            for b in bookings
        ],
    )
