import json
import uuid
from datetime import datetime, timezone

SOURCE = "booking-service"

BOOKING_CREATED = "booking.created"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_EXPIRED = "booking.expired"
BOOKING_COMPLETED = "booking.completed"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_PAYMENT_FAILED = "booking.payment_failed"

# consumed from the payments side
PAYMENT_PAID = "payment.paid"
PAYMENT_FAILED = "payment.failed"


def build_event(event_type: str, data: dict, source: str = SOURCE) -> dict:
    return {
        "event_id": uuid.uuid4().hex,
        "event_type": event_type,
        "source": source,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def to_json(event: dict) -> str:
    # Decimal amounts and datetimes fall back to str
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=str)
