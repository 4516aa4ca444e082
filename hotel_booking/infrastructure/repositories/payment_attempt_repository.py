# hotel_booking/infrastructure/repositories/payment_attempt_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import func, select

from hotel_booking.infrastructure.db.models import PaymentAttempt


class PaymentAttemptRepository:

    def __init__(self, db: Session):
        self.db = db

    def list_for_booking(self, booking_id: str) -> list[PaymentAttempt]:
        stmt = (
            select(PaymentAttempt)
            .where(PaymentAttempt.booking_id == booking_id)
            .order_by(PaymentAttempt.sequence)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_open_attempt(
        self,
        booking_id: str,
        gateway_order_id: str | None = None,
    ) -> PaymentAttempt | None:
        """Latest attempt whose verification outcome is not recorded yet."""

        stmt = (
            select(PaymentAttempt)
            .where(PaymentAttempt.booking_id == booking_id)
            .where(PaymentAttempt.signature_valid.is_(None))
        )
        if gateway_order_id is not None:
            stmt = stmt.where(PaymentAttempt.gateway_order_id == gateway_order_id)
        stmt = stmt.order_by(PaymentAttempt.sequence.desc()).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def next_sequence(self, booking_id: str) -> int:
        stmt = select(func.max(PaymentAttempt.sequence)).where(
            PaymentAttempt.booking_id == booking_id
        )
        current = self.db.execute(stmt).scalar_one_or_none()
        return (current or 0) + 1

    def create(
        self,
        booking_id: str,
        gateway_order_id: str,
        amount_minor: int,
        currency: str,
    ) -> PaymentAttempt:
        attempt = PaymentAttempt(
            booking_id=booking_id,
            sequence=self.next_sequence(booking_id),
            gateway_order_id=gateway_order_id,
            amount_minor=amount_minor,
            currency=currency,
        )
        self.db.add(attempt)
        self.db.flush()
        return attempt

    def is_consumed_by_other_booking(
        self,
        gateway_order_id: str,
        gateway_payment_id: str,
        booking_id: str,
    ) -> bool:
        """
        A verified (order, payment) pair belongs to exactly one booking;
        a payment id seen with a different order is treated as consumed too.
        """

        stmt = (
            select(PaymentAttempt.id)
            .where(PaymentAttempt.gateway_payment_id == gateway_payment_id)
            .where(PaymentAttempt.signature_valid.is_(True))
            .where(
                (PaymentAttempt.booking_id != booking_id)
                | (PaymentAttempt.gateway_order_id != gateway_order_id)
            )
            .limit(1)
        )
        return self.db.execute(stmt).first() is not None
