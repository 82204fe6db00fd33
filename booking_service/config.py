import os

BOOKING_DB = os.getenv("BOOKING_DB")
REDIS_URL = os.getenv("REDIS_URL")
RABBIT_URL = os.getenv("RABBIT_URL")  # optional; events disabled when unset

PAYMONGO_SECRET_KEY = os.getenv("PAYMONGO_SECRET_KEY")
PAYMONGO_API_URL = os.getenv("PAYMONGO_API_URL") or "https://api.paymongo.com/v1"
PAYMENT_HTTP_TIMEOUT = float(os.getenv("PAYMENT_HTTP_TIMEOUT") or "10.0")

FRONTEND_URL = os.getenv("FRONTEND_URL") or "http://localhost:3000"
BOOKING_CURRENCY = os.getenv("BOOKING_CURRENCY") or "PHP"

CANCELLATION_WINDOW_HOURS = int(os.getenv("CANCELLATION_WINDOW_HOURS") or "24")
PENDING_BOOKING_TIMEOUT_SECONDS = int(os.getenv("PENDING_BOOKING_TIMEOUT_SECONDS") or "900")
RECONCILE_INTERVAL_SECONDS = float(os.getenv("RECONCILE_INTERVAL_SECONDS") or "60")

LOG_LEVEL = os.getenv("LOG_LEVEL") or "INFO"


def require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"{name} environment variable is not set")
    return value
