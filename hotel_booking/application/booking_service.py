from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import logging
import math
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from hotel_booking.application.payment_order_coordinator import (
    OrderParams,
    PaymentOrderCoordinator,
)
from hotel_booking.application.payment_verifier import PaymentVerifier
from hotel_booking.application.reservation_ledger import ReservationLedger
from hotel_booking.config import Settings
from hotel_booking.domain.exceptions import (
    BookingNotFoundError,
    ConcurrentModificationError,
    ForbiddenError,
    GatewayUnavailableError,
    InvalidRequestError,
    RoomUnavailableError,
    SignatureMismatchError,
)
from hotel_booking.domain.state_machine import BookingStateMachine, BookingStatus
from hotel_booking.domain.stay import as_utc, utc_now, validate_stay
from hotel_booking.infrastructure.db.models import Booking
from hotel_booking.infrastructure.db.session import get_db_session
from hotel_booking.infrastructure.gateway.razorpay_gateway import PaymentGateway
from hotel_booking.infrastructure.repositories.booking_repository import BookingRepository
from hotel_booking.infrastructure.repositories.outbox_repository import OutboxRepository
from hotel_booking.infrastructure.repositories.room_repository import RoomRepository

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class BookingPage:
    bookings: list[Booking]
    page: int
    limit: int
    total: int
    counts: dict[BookingStatus, int] = field(default_factory=dict)
    total_spent_minor: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)


class BookingService:
    """
    Application service owning every booking transition.

    Each operation runs in its own unit of work. Status changes are
    compare-and-swap updates on (status, version), and ledger writes
    share the transaction of the transition they belong to.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: PaymentGateway,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.settings = settings
        self.clock = clock
        self.coordinator = PaymentOrderCoordinator(session_factory, gateway, settings)

    # ------------------------------------------------------------------
    # CreateBooking
    # ------------------------------------------------------------------
    def create_booking(
        self,
        user_id: str,
        hotel_id: str,
        room_id: str,
        check_in: date,
        check_out: date,
        guest_count: int,
        total_amount: int,
    ) -> Booking:
        validate_stay(check_in, check_out)
        if guest_count <= 0:
            raise InvalidRequestError("guest_count must be positive")
        if total_amount <= 0:
            raise InvalidRequestError("total_amount must be positive")

        now = self.clock()
        with get_db_session(self.session_factory) as db:
            capacity = RoomRepository(db).get_capacity(hotel_id, room_id)
            if capacity is None:
                raise InvalidRequestError(f"Room {room_id} not found in hotel {hotel_id}")
            if guest_count > capacity:
                raise InvalidRequestError(
                    f"Room {room_id} holds at most {capacity} guests"
                )

            booking = BookingRepository(db).add(
                Booking(
                    user_id=user_id,
                    hotel_id=hotel_id,
                    room_id=room_id,
                    check_in=check_in,
                    check_out=check_out,
                    guest_count=guest_count,
                    total_amount_minor=total_amount,
                    currency=self.settings.currency,
                    status=BookingStatus.DRAFT,
                    verify_attempt_count=0,
                    refund_eligible=False,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
            )

        logger.info(
            "Booking created. booking_id=%s room_id=%s check_in=%s check_out=%s",
            booking.id,
            room_id,
            check_in,
            check_out,
        )
        return booking

    # ------------------------------------------------------------------
    # InitiatePayment
    # ------------------------------------------------------------------
    def initiate_payment(self, booking_id: str, caller_id: str) -> OrderParams:
        now = self.clock()
        held_until = now + timedelta(minutes=self.settings.hold_ttl_minutes)

        with get_db_session(self.session_factory) as db:
            booking = self._load_owned(db, booking_id, caller_id)

            if booking.status == BookingStatus.PENDING and booking.payment_order_id:
                return self._stored_order(booking)

            BookingStateMachine.validate_transition(booking.status, BookingStatus.PENDING)

            acquired = ReservationLedger(db).try_acquire(
                room_id=booking.room_id,
                check_in=booking.check_in,
                check_out=booking.check_out,
                booking_id=booking.id,
                held_until=held_until,
            )
            if not acquired:
                raise RoomUnavailableError(
                    f"Room {booking.room_id} is not available "
                    f"from {booking.check_in} to {booking.check_out}"
                )
            seen_version = booking.version

        # Hold is committed; no transaction is open across the gateway call.
        try:
            order = self.coordinator.create_order(
                booking_id=booking.id,
                amount=booking.total_amount_minor,
                currency=booking.currency,
            )
        except GatewayUnavailableError:
            self._release_draft_holds(booking.id)
            raise

        with get_db_session(self.session_factory) as db:
            repo = BookingRepository(db)
            swapped = repo.compare_and_set(
                booking.id,
                BookingStatus.DRAFT,
                seen_version,
                status=BookingStatus.PENDING,
                expires_at=held_until,
                payment_order_id=order.order_id,
                verify_attempt_count=0,
                updated_at=self.clock(),
            )
            if not swapped:
                current = repo.lock_by_id(booking.id)
                if (
                    current is not None
                    and current.status == BookingStatus.PENDING
                    and current.payment_order_id
                ):
                    return self._stored_order(current)
                raise ConcurrentModificationError(
                    f"Booking {booking.id} changed while starting payment"
                )

        logger.info(
            "Payment initiated. booking_id=%s order_id=%s expires_at=%s",
            booking.id,
            order.order_id,
            held_until.isoformat(),
        )
        return order

    # ------------------------------------------------------------------
    # VerifyPayment
    # ------------------------------------------------------------------
    def verify_payment(
        self,
        booking_id: str,
        caller_id: str,
        gateway_payment_id: str,
        gateway_signature: str,
        gateway_order_id: str | None = None,
    ) -> Booking:
        with get_db_session(self.session_factory) as db:
            repo = BookingRepository(db)
            booking = self._load_owned(db, booking_id, caller_id)

            if (
                booking.status == BookingStatus.CONFIRMED
                and booking.gateway_payment_id == gateway_payment_id
            ):
                return booking

            BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)

            now = self.clock()
            valid = PaymentVerifier(db, self.gateway).verify(
                booking,
                gateway_payment_id=gateway_payment_id,
                gateway_signature=gateway_signature,
                now=now,
                claimed_order_id=gateway_order_id,
            )
            ledger = ReservationLedger(db)

            if valid:
                self._swap(
                    repo,
                    booking,
                    status=BookingStatus.CONFIRMED,
                    gateway_payment_id=gateway_payment_id,
                    expires_at=None,
                    updated_at=now,
                )
                ledger.confirm(booking.id)
                self._record_event(
                    db,
                    booking,
                    "BOOKING_CONFIRMED",
                    payment_id=gateway_payment_id,
                    amount_minor=booking.total_amount_minor,
                )
                logger.info(
                    "Booking confirmed. booking_id=%s payment_id=%s",
                    booking.id,
                    gateway_payment_id,
                )
                return repo.lock_by_id(booking.id)

            attempts = booking.verify_attempt_count + 1
            payment_failed = attempts > self.settings.max_verify_attempts
            if payment_failed:
                self._swap(
                    repo,
                    booking,
                    status=BookingStatus.PAYMENT_FAILED,
                    verify_attempt_count=attempts,
                    updated_at=now,
                )
                ledger.release(booking.id)
                self._record_event(
                    db,
                    booking,
                    "BOOKING_PAYMENT_FAILED",
                    reason="INVALID_SIGNATURE",
                    attempts=attempts,
                )
                logger.warning(
                    "Booking payment failed. booking_id=%s attempts=%s",
                    booking.id,
                    attempts,
                )
            else:
                self._swap(
                    repo,
                    booking,
                    verify_attempt_count=attempts,
                    updated_at=now,
                )

        # Committed above; the caller still learns the callback was rejected.
        raise SignatureMismatchError(booking_id, attempts, payment_failed)

    # ------------------------------------------------------------------
    # CancelBooking
    # ------------------------------------------------------------------
    def cancel_booking(
        self,
        booking_id: str,
        caller_id: str,
        reason: str | None = None,
    ) -> Booking:
        with get_db_session(self.session_factory) as db:
            repo = BookingRepository(db)
            booking = self._load_owned(db, booking_id, caller_id)

            if booking.status == BookingStatus.CANCELLED:
                return booking

            BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)

            refund_eligible = booking.status == BookingStatus.CONFIRMED
            self._swap(
                repo,
                booking,
                status=BookingStatus.CANCELLED,
                refund_eligible=refund_eligible,
                cancel_reason=reason,
                expires_at=None,
                updated_at=self.clock(),
            )
            ReservationLedger(db).release(booking.id)
            self._record_event(
                db,
                booking,
                "BOOKING_CANCELLED",
                reason=reason,
                refund_eligible=refund_eligible,
            )
            logger.info(
                "Booking cancelled. booking_id=%s refund_eligible=%s",
                booking.id,
                refund_eligible,
            )
            return repo.lock_by_id(booking.id)

    # ------------------------------------------------------------------
    # Expiry (reaper only)
    # ------------------------------------------------------------------
    def expire_booking(self, booking_id: str, now: datetime | None = None) -> bool:
        """
        Re-reads the booking under lock before expiring it; returns False
        when its TTL has not elapsed yet.
        """
        now = now or self.clock()
        with get_db_session(self.session_factory) as db:
            repo = BookingRepository(db)
            booking = repo.lock_by_id(booking_id)
            if booking is None:
                raise BookingNotFoundError(booking_id)

            BookingStateMachine.validate_transition(booking.status, BookingStatus.EXPIRED)
            if not self._ttl_elapsed(booking, now):
                return False

            self._swap(
                repo,
                booking,
                status=BookingStatus.EXPIRED,
                updated_at=now,
            )
            released = ReservationLedger(db).release(booking.id)
            self._record_event(db, booking, "BOOKING_EXPIRED", released_nights=released)

        logger.info(
            "Booking expired. booking_id=%s previous_status=%s released_nights=%s",
            booking_id,
            booking.status.value,
            released,
        )
        return True

    def find_expirable(self, now: datetime | None = None) -> list[str]:
        now = now or self.clock()
        draft_cutoff = now - timedelta(hours=self.settings.draft_ttl_hours)
        with get_db_session(self.session_factory) as db:
            return BookingRepository(db).find_expirable_ids(now, draft_cutoff)

    def release_lapsed_draft_holds(self, now: datetime | None = None) -> int:
        """Frees holds left behind by a payment start that never finished."""
        now = now or self.clock()
        with get_db_session(self.session_factory) as db:
            booking_ids = BookingRepository(db).find_drafts_with_lapsed_holds(now)

        return sum(self._release_draft_holds(booking_id) for booking_id in booking_ids)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_booking(self, booking_id: str, caller_id: str) -> Booking:
        with get_db_session(self.session_factory) as db:
            return self._load_owned(db, booking_id, caller_id, lock=False)

    def list_bookings(
        self,
        caller_id: str,
        status: BookingStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> BookingPage:
        if page < 1:
            raise InvalidRequestError("page must be at least 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidRequestError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        with get_db_session(self.session_factory) as db:
            repo = BookingRepository(db)
            return BookingPage(
                bookings=repo.list_for_user(
                    caller_id, status, offset=(page - 1) * limit, limit=limit
                ),
                page=page,
                limit=limit,
                total=repo.count_for_user(caller_id, status),
                counts=repo.count_by_status(caller_id),
                total_spent_minor=repo.total_spent_minor(caller_id),
            )

    def is_available(self, room_id: str, check_in: date, check_out: date) -> bool:
        with get_db_session(self.session_factory) as db:
            return ReservationLedger(db).is_available(room_id, check_in, check_out)

    def held_nights(self, booking_id: str) -> int:
        with get_db_session(self.session_factory) as db:
            return ReservationLedger(db).held_nights(booking_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _load_owned(
        self,
        db: Session,
        booking_id: str,
        caller_id: str,
        lock: bool = True,
    ) -> Booking:
        repo = BookingRepository(db)
        booking = repo.lock_by_id(booking_id) if lock else repo.get_by_id(booking_id)
        if booking is None:
            raise BookingNotFoundError(booking_id)
        if booking.user_id != caller_id:
            raise ForbiddenError(f"Booking {booking_id} does not belong to caller")
        return booking

    def _swap(self, repo: BookingRepository, booking: Booking, **values) -> None:
        if not repo.compare_and_set(booking.id, booking.status, booking.version, **values):
            raise ConcurrentModificationError(
                f"Booking {booking.id} changed concurrently"
            )

    def _ttl_elapsed(self, booking: Booking, now: datetime) -> bool:
        if booking.expires_at is not None:
            return as_utc(booking.expires_at) < now
        if booking.status == BookingStatus.DRAFT:
            draft_ttl = timedelta(hours=self.settings.draft_ttl_hours)
            return as_utc(booking.created_at) + draft_ttl < now
        return False

    def _release_draft_holds(self, booking_id: str) -> int:
        with get_db_session(self.session_factory) as db:
            booking = BookingRepository(db).lock_by_id(booking_id)
            if booking is None or booking.status != BookingStatus.DRAFT:
                return 0
            released = ReservationLedger(db).release(booking_id)

        if released:
            logger.info(
                "Released holds of DRAFT booking. booking_id=%s nights=%s",
                booking_id,
                released,
            )
        return released

    def _stored_order(self, booking: Booking) -> OrderParams:
        return self.coordinator.order_params(
            booking.id,
            booking.payment_order_id,
            booking.total_amount_minor,
            booking.currency,
        )

    @staticmethod
    def _record_event(db: Session, booking: Booking, event_type: str, **payload) -> None:
        OutboxRepository(db).add(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type=event_type,
            payload={
                "booking_id": booking.id,
                "room_id": booking.room_id,
                "check_in": booking.check_in.isoformat(),
                "check_out": booking.check_out.isoformat(),
                **payload,
            },
            dedupe_key=f"booking:{booking.id}:{event_type}",
        )
