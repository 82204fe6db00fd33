from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from . import config
from .breaker import CircuitBreaker
from .cancellation import CancellationPolicyEnforcer
from .catalog import VehicleCatalog
from .consumer import PaymentEventConsumer
from .coordinator import BookingTransactionCoordinator
from .db import get_engine, get_session
from .locks import VehicleLocks
from .payment_status import PaymentStatusUpdater
from .payments import PaymentGatewayClient, RedirectUrls
from .publisher import Publisher
from .queries import BookingQueryService
from .reconciliation import BookingReconciler
from .redis_client import get_redis
from .store import BookingStore


@dataclass
class BookingServices:
    store: BookingStore
    coordinator: BookingTransactionCoordinator
    cancellation: CancellationPolicyEnforcer
    queries: BookingQueryService
    payment_status: PaymentStatusUpdater
    reconciler: BookingReconciler
    publisher: Optional[Publisher] = None
    consumer: Optional[PaymentEventConsumer] = None
    engine: Any = None
    redis: Any = None


def build_services() -> BookingServices:
    engine = get_engine(config.require("BOOKING_DB"))
    redis_client = get_redis(config.require("REDIS_URL"))
    store = BookingStore(get_session(engine))
    publisher = Publisher(config.RABBIT_URL)

    payments = PaymentGatewayClient(
        secret_key=config.require("PAYMONGO_SECRET_KEY"),
        base_url=config.PAYMONGO_API_URL,
        timeout=config.PAYMENT_HTTP_TIMEOUT,
        breaker=CircuitBreaker(redis_client, "payment-gateway", failure_threshold=5, reset_timeout_seconds=30),
    )
    redirect = RedirectUrls(
        success=f"{config.FRONTEND_URL}/payment-success",
        failure=f"{config.FRONTEND_URL}/payment-failure",
    )

    payment_status = PaymentStatusUpdater(store, publisher=publisher)
    return BookingServices(
        store=store,
        coordinator=BookingTransactionCoordinator(
            store,
            VehicleCatalog(),
            payments,
            redirect,
            config.BOOKING_CURRENCY,
            locks=VehicleLocks(),
            publisher=publisher,
        ),
        cancellation=CancellationPolicyEnforcer(
            store,
            window=timedelta(hours=config.CANCELLATION_WINDOW_HOURS),
            publisher=publisher,
        ),
        queries=BookingQueryService(store),
        payment_status=payment_status,
        reconciler=BookingReconciler(
            store,
            pending_timeout=timedelta(seconds=config.PENDING_BOOKING_TIMEOUT_SECONDS),
            publisher=publisher,
        ),
        publisher=publisher,
        consumer=PaymentEventConsumer(payment_status, redis_client),
        engine=engine,
        redis=redis_client,
    )
