# hotel_booking/application/payment_order_coordinator.py

from dataclasses import dataclass, field
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from hotel_booking.config import Settings
from hotel_booking.infrastructure.db.session import get_db_session
from hotel_booking.infrastructure.gateway.razorpay_gateway import (
    PaymentGateway,
    idempotency_key_for,
)
from hotel_booking.infrastructure.repositories.payment_attempt_repository import (
    PaymentAttemptRepository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderParams:
    """Everything the checkout widget needs, handed back verbatim."""

    key: str
    amount: int
    currency: str
    order_id: str
    name: str
    description: str
    notes: dict[str, str] = field(default_factory=dict)


class PaymentOrderCoordinator:
    """
    Requests at most one live gateway order per booking.

    Never runs inside a caller's transaction: the gateway round-trip
    happens with no database transaction open.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: PaymentGateway,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.settings = settings

    def create_order(
        self,
        booking_id: str,
        amount: int,
        currency: str | None = None,
    ) -> OrderParams:
        currency = currency or self.settings.currency

        with get_db_session(self.session_factory) as db:
            attempt = PaymentAttemptRepository(db).get_open_attempt(booking_id)
            if attempt and attempt.amount_minor == amount and attempt.currency == currency:
                logger.info(
                    "Reusing stored order. booking_id=%s order_id=%s",
                    booking_id,
                    attempt.gateway_order_id,
                )
                return self.order_params(booking_id, attempt.gateway_order_id, amount, currency)

        order = self.gateway.create_order(
            amount=amount,
            currency=currency,
            idempotency_key=idempotency_key_for(booking_id),
            notes={"booking_id": booking_id},
        )

        try:
            with get_db_session(self.session_factory) as db:
                PaymentAttemptRepository(db).create(
                    booking_id=booking_id,
                    gateway_order_id=order.order_id,
                    amount_minor=order.amount,
                    currency=order.currency,
                )
        except IntegrityError:
            # A concurrent retry recorded its attempt first; keep that order.
            with get_db_session(self.session_factory) as db:
                attempt = PaymentAttemptRepository(db).get_open_attempt(booking_id)
            if attempt is None:
                raise
            return self.order_params(
                booking_id, attempt.gateway_order_id, attempt.amount_minor, attempt.currency
            )

        logger.info(
            "Gateway order created. booking_id=%s order_id=%s amount=%s currency=%s",
            booking_id,
            order.order_id,
            order.amount,
            order.currency,
        )
        return self.order_params(booking_id, order.order_id, order.amount, order.currency)

    def order_params(
        self,
        booking_id: str,
        order_id: str,
        amount: int,
        currency: str,
    ) -> OrderParams:
        return OrderParams(
            key=self.gateway.key_id,
            amount=amount,
            currency=currency,
            order_id=order_id,
            name=self.settings.display_name,
            description="Hotel Booking",
            notes={"booking_id": booking_id},
        )
