from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import sessionmaker

from hotel_booking.application.booking_service import BookingService
from hotel_booking.config import settings
from hotel_booking.infrastructure.db.session import SessionLocal
from hotel_booking.infrastructure.gateway.razorpay_gateway import RazorpayGateway


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    return SessionLocal


@lru_cache(maxsize=1)
def razorpay_gateway() -> RazorpayGateway:
    return RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        base_url=settings.razorpay_base_url,
        timeout_seconds=settings.gateway_timeout_seconds,
    )


def require_gateway_keys() -> None:
    # Only routes that create or verify gateway payments need the keys.
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.",
        )


def get_booking_service(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> BookingService:
    return BookingService(
        session_factory=session_factory,
        gateway=razorpay_gateway(),
        settings=settings,
    )


def get_caller_id(x_caller_id: str | None = Header(default=None)) -> str:
    # Resolved upstream by the identity layer; the core only needs the id.
    if not x_caller_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Caller-Id header",
        )
    return x_caller_id
