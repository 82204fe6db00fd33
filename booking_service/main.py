import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import config
from .errors import BookingError, ValidationError
from .routes import router
from .services import BookingServices, build_services

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "validation_error": 400,
    "authorization_error": 403,
    "not_found": 404,
    "availability_conflict": 409,
    "invalid_state": 409,
    "concurrent_modification": 409,
    "policy_violation": 422,
    "configuration_error": 500,
    "payment_gateway_error": 502,
    "persistence_error": 503,
}


def create_app(services: BookingServices | None = None, background: bool = True) -> FastAPI:
    app = FastAPI(title="Vehicle Booking Service")
    app.include_router(router)
    app.state.services = services

    stop_event = asyncio.Event()
    state = {"consumer_conn": None, "reconcile_task": None}

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        status = ERROR_STATUS.get(exc.kind, 500)
        if status >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.kind)
        return JSONResponse(status_code=status, content={"error": exc.kind, "detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse(
            status_code=ERROR_STATUS[ValidationError.kind],
            content={"error": ValidationError.kind, "detail": detail or "Invalid request."},
        )

    @app.get("/health")
    async def health():
        svc = app.state.services
        return {
            "status": "ok",
            "service": "booking-service",
            "events_enabled": bool(svc and svc.publisher and svc.publisher.enabled),
        }

    @app.on_event("startup")
    async def startup():
        logging.basicConfig(level=config.LOG_LEVEL)
        if app.state.services is None:
            app.state.services = build_services()
        svc = app.state.services
        if not background:
            return

        if svc.publisher:
            try:
                await svc.publisher.start()
            except Exception as e:
                logger.warning("RabbitMQ connect failed at startup; continuing: %s", e)

        # the service keeps serving bookings without payment events
        if svc.consumer:
            try:
                state["consumer_conn"] = await svc.consumer.start(config.RABBIT_URL)
            except Exception as e:
                logger.warning("payment event consumer failed to start: %s", e)

        state["reconcile_task"] = asyncio.create_task(
            svc.reconciler.run(stop_event, config.RECONCILE_INTERVAL_SECONDS)
        )

    @app.on_event("shutdown")
    async def shutdown():
        stop_event.set()
        if state["reconcile_task"]:
            await state["reconcile_task"]

        conn = state["consumer_conn"]
        if conn and not conn.is_closed:
            await conn.close()

        svc = app.state.services
        if svc and svc.publisher:
            await svc.publisher.close()
        if svc and svc.engine is not None:
            await svc.engine.dispose()

    return app


app = create_app()
