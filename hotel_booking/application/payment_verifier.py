# hotel_booking/application/payment_verifier.py

from datetime import datetime
import logging

from sqlalchemy.orm import Session

from hotel_booking.infrastructure.db.models import Booking, PaymentAttempt
from hotel_booking.infrastructure.gateway.razorpay_gateway import PaymentGateway
from hotel_booking.infrastructure.repositories.payment_attempt_repository import (
    PaymentAttemptRepository,
)

security_logger = logging.getLogger("hotel_booking.security")


class PaymentVerifier:
    """
    Checks a gateway callback against the booking's order.

    Records the outcome on a PaymentAttempt but never changes the
    booking; BookingService decides what the result means.
    """

    def __init__(self, db: Session, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.attempts = PaymentAttemptRepository(db)

    def verify(
        self,
        booking: Booking,
        gateway_payment_id: str,
        gateway_signature: str,
        now: datetime,
        claimed_order_id: str | None = None,
    ) -> bool:
        order_id = booking.payment_order_id
        if not order_id:
            return False

        if claimed_order_id is not None and claimed_order_id != order_id:
            security_logger.warning(
                "security_event=order_mismatch booking_id=%s order_id=%s claimed_order_id=%s",
                booking.id,
                order_id,
                claimed_order_id,
            )
            valid = False
        elif self.attempts.is_consumed_by_other_booking(
            gateway_order_id=order_id,
            gateway_payment_id=gateway_payment_id,
            booking_id=booking.id,
        ):
            security_logger.warning(
                "security_event=payment_replay booking_id=%s order_id=%s payment_id=%s",
                booking.id,
                order_id,
                gateway_payment_id,
            )
            valid = False
        else:
            valid = self.gateway.verify_signature(
                order_id=order_id,
                payment_id=gateway_payment_id,
                signature=gateway_signature,
            )
            if not valid:
                security_logger.warning(
                    "security_event=signature_mismatch booking_id=%s order_id=%s payment_id=%s",
                    booking.id,
                    order_id,
                    gateway_payment_id,
                )

        self._record(booking, order_id, gateway_payment_id, valid, now)
        return valid

    def _record(
        self,
        booking: Booking,
        order_id: str,
        gateway_payment_id: str,
        valid: bool,
        now: datetime,
    ) -> PaymentAttempt:
        attempt = self.attempts.get_open_attempt(booking.id, order_id)
        if attempt is None:
            # Earlier attempts are already decided and stay untouched.
            attempt = self.attempts.create(
                booking_id=booking.id,
                gateway_order_id=order_id,
                amount_minor=booking.total_amount_minor,
                currency=booking.currency,
            )

        attempt.gateway_payment_id = gateway_payment_id
        attempt.signature_valid = valid
        attempt.processed_at = now
        self.db.flush()
        return attempt
