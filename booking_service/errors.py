"""
Typed failures raised by the booking core.

Every error carries a stable ``kind`` (used by the HTTP layer and in logs)
and a human-readable message. Internal kinds (persistence, gateway) are
raised with a generic message; the underlying exception stays on
``__cause__`` for logging.
"""


class BookingError(Exception):
    kind = "booking_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    kind = "validation_error"


class AvailabilityConflictError(BookingError):
    kind = "availability_conflict"


class NotFoundError(BookingError):
    kind = "not_found"


class AuthorizationError(BookingError):
    kind = "authorization_error"


class PolicyViolationError(BookingError):
    kind = "policy_violation"


class InvalidStateError(BookingError):
    kind = "invalid_state"


class ConfigurationError(BookingError):
    kind = "configuration_error"


class PaymentGatewayError(BookingError):
    kind = "payment_gateway_error"

    def __init__(self, message: str, provider_detail: str | None = None):
        super().__init__(message)
        self.provider_detail = provider_detail


class ConcurrentModificationError(BookingError):
    kind = "concurrent_modification"


class PersistenceError(BookingError):
    kind = "persistence_error"
