import logging
import os

from fastapi import FastAPI

from hotel_booking.api.dependencies import razorpay_gateway
from hotel_booking.api.routes.routes import router
from hotel_booking.application.booking_service import BookingService
from hotel_booking.application.expiry_reaper import ExpiryReaper
from hotel_booking.config import settings
from hotel_booking.infrastructure.db.session import SessionLocal, engine, wait_for_database
from hotel_booking.infrastructure.db.models import Base

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(title="Hotel Booking Core")

app.include_router(router)

reaper: ExpiryReaper | None = None


@app.on_event("startup")
def on_startup() -> None:
    global reaper

    wait_for_database(
        engine,
        max_retries=settings.db_connect_max_retries,
        retry_delay_seconds=settings.db_connect_retry_delay,
    )
    Base.metadata.create_all(bind=engine)

    if settings.reaper_enabled:
        # Expiry never talks to the gateway, so unset keys are fine here.
        service = BookingService(
            session_factory=SessionLocal,
            gateway=razorpay_gateway(),
            settings=settings,
        )
        reaper = ExpiryReaper(service, interval_seconds=settings.reaper_interval_seconds)
        reaper.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    if reaper is not None:
        reaper.stop()
