from datetime import datetime
from decimal import Decimal
from typing import List

from pydantic import BaseModel


class CreateBookingRequest(BaseModel):
    vehicle_id: int
    start_time: datetime
    end_time: datetime
    payment_method_type: str


class BookingReceiptResponse(BaseModel):
    booking_id: int
    vehicle_id: int
    user_id: int
    start_time: str
    end_time: str
    total_cost: Decimal
    booking_status: str
    payment_status: str
    payment_intent_id: str
    payment_redirect_url: str | None = None


class QuoteResponse(BaseModel):
    vehicle_id: int
    start_time: str
    end_time: str
    is_available: bool
    total_cost: Decimal


class BookingResponse(BaseModel):
    booking_id: int
    vehicle_id: int
    user_id: int
    start_time: str
    end_time: str
    total_cost: Decimal
    booking_status: str
    payment_status: str
    payment_intent_id: str | None = None
    created_at: str
    updated_at: str


class VehicleSummaryResponse(BaseModel):
    vehicle_id: int
    make: str
    model: str
    year: int | None = None
    daily_rate: Decimal | None = None
    hourly_rate: Decimal | None = None


class OwnerBookingResponse(BaseModel):
    booking: BookingResponse
    vehicle: VehicleSummaryResponse


class CancelBookingResponse(BaseModel):
    booking_id: int
    booking_status: str
    message: str


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse]


class OwnerBookingListResponse(BaseModel):
    bookings: List[OwnerBookingResponse]


class ErrorResponse(BaseModel):
    error: str
    detail: str


class BookedIntervalResponse(BaseModel):
    booking_id: int
    start_time: str
    end_time: str
    booking_status: str


class VehicleScheduleResponse(BaseModel):
    vehicle_id: int
    bookings: List[BookedIntervalResponse]
