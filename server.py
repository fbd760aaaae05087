import traceback
from datetime import datetime, timezone
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

import availability
from booking_schemas import HealthResponse
from config import Settings
from errors import BookingServiceError, ValidationError, error_response
from logging_setup import configure_logging
from payments import routes as payment_routes
from payments.checkout import CheckoutService
from payments.gateway import RazorpayGateway
from persistence.db import build_engine, init_db, make_session_factory
from persistence.notion_store import NotionBookingStore
from txn_manager import SideEffectRunner
from webhooks import webhooks

logger = structlog.get_logger(component="server")


def _debug_fields(request: Request, exc: Exception) -> dict:
    settings = request.app.state.settings
    if settings.is_production:
        return {}
    return {"stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))}


async def _validation_handler(request: Request, exc: ValidationError):
    logger.warning("validation_failed", path=request.url.path, errors=exc.errors)
    return error_response(exc.http_status, exc.public_error, details=exc.details())


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    ]
    logger.warning("request_rejected", path=request.url.path, errors=details)
    return error_response(400, "Validation failed", details=details)


async def _service_error_handler(request: Request, exc: BookingServiceError):
    logger.error("request_failed", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
    return error_response(exc.http_status, exc.public_error, details=exc.details(), **_debug_fields(request, exc))


async def _unhandled_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
    details = None if request.app.state.settings.is_production else str(exc)
    return error_response(500, "Internal Server Error", details=details, **_debug_fields(request, exc))


def create_app(settings: Optional[Settings] = None, gateway=None, store=None,
               side_effects: Optional[SideEffectRunner] = None) -> FastAPI:
    """
    Build the booking API. Collaborators are constructed from settings unless
    passed in; missing configuration raises ConfigurationError here, at startup.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, json_output=settings.is_production)

    if side_effects is None:
        engine = build_engine(settings.database_url)
        init_db(engine)
        side_effects = SideEffectRunner(make_session_factory(engine))
    gateway = gateway or RazorpayGateway(
        settings.razorpay_key_id, settings.razorpay_key_secret, environment=settings.environment
    )
    store = store or NotionBookingStore(settings.notion_api_key, settings.notion_database_id)

    app = FastAPI(title="Villa Bookings API")
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.store = store
    app.state.side_effects = side_effects
    app.state.checkout = CheckoutService(gateway, store, side_effects, default_currency=settings.default_currency)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(ValidationError, _validation_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(BookingServiceError, _service_error_handler)
    app.add_exception_handler(Exception, _unhandled_handler)

    @app.get("/api/health", response_model=HealthResponse)
    @app.get("/health", response_model=HealthResponse)
    def health():
        return HealthResponse(timestamp=datetime.now(timezone.utc).isoformat())

    app.include_router(payment_routes.router)
    app.include_router(webhooks.router)
    app.include_router(availability.router)

    logger.info("app_created", environment=settings.environment, cors_origins=settings.cors_origins)
    return app


def main():
    uvicorn.run("server:create_app", factory=True, host="0.0.0.0", port=5000)


if __name__ == "__main__":
    main()
