from datetime import date

import pytest

from hotel_booking.application.booking_service import BookingService
from hotel_booking.domain.exceptions import (
    BookingNotFoundError,
    ForbiddenError,
    GatewayUnavailableError,
    InvalidRequestError,
    InvalidStateTransitionError,
    SignatureMismatchError,
)
from hotel_booking.domain.state_machine import BookingStatus
from hotel_booking.infrastructure.db.session import get_db_session
from hotel_booking.infrastructure.gateway.razorpay_gateway import RazorpayGateway
from hotel_booking.infrastructure.repositories.outbox_repository import OutboxRepository
from hotel_booking.infrastructure.repositories.payment_attempt_repository import (
    PaymentAttemptRepository,
)


def _pending(service, make_booking, **kwargs):
    booking = make_booking(**kwargs)
    order = service.initiate_payment(booking.id, booking.user_id)
    return booking, order


def _events(session_factory, booking_id):
    with get_db_session(session_factory) as db:
        return [item.event_type for item in OutboxRepository(db).list_for_aggregate(booking_id)]


# ---------------------
# CREATE
# ---------------------

def test_create_starts_in_draft_without_holds(service, make_booking):
    booking = make_booking()

    assert booking.status == BookingStatus.DRAFT
    assert booking.expires_at is None
    assert booking.payment_order_id is None
    assert service.held_nights(booking.id) == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"check_in": "2024-05-03", "check_out": "2024-05-01"},
        {"check_in": "2024-05-01", "check_out": "2024-05-01"},
        {"guest_count": 0},
        {"guest_count": 3},  # R101 sleeps two
        {"total_amount": 0},
        {"room_id": "R999"},
    ],
)
def test_create_rejects_invalid_requests(make_booking, overrides):
    with pytest.raises(InvalidRequestError):
        make_booking(**overrides)


# ---------------------
# INITIATE PAYMENT
# ---------------------

def test_scenario_c_order_amount_matches_and_signature_confirms(
    service, make_booking, signer, clock
):
    booking = make_booking(total_amount=39200)

    order = service.initiate_payment(booking.id, "guest-1")

    assert order.amount == 39200
    assert order.currency == "INR"
    assert order.key == "rzp_test_key"
    assert order.notes == {"booking_id": booking.id}

    pending = service.get_booking(booking.id, "guest-1")
    assert pending.status == BookingStatus.PENDING
    assert pending.payment_order_id == order.order_id
    assert pending.verify_attempt_count == 0
    assert service.held_nights(booking.id) == 2

    confirmed = service.verify_payment(
        booking.id,
        "guest-1",
        gateway_payment_id="pay_001",
        gateway_signature=signer(order.order_id, "pay_001"),
    )

    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.gateway_payment_id == "pay_001"
    assert service.held_nights(booking.id) == 2
    assert "BOOKING_CONFIRMED" in _events(service.session_factory, booking.id)


def test_initiate_sets_expiry_from_hold_ttl(service, make_booking, clock):
    booking, _ = _pending(service, make_booking)

    pending = service.get_booking(booking.id, "guest-1")
    expires_at = pending.expires_at.replace(tzinfo=None)

    assert (expires_at - clock.now.replace(tzinfo=None)).total_seconds() == 15 * 60


def test_initiate_twice_returns_same_order(service, make_booking, gateway):
    booking, first = _pending(service, make_booking)

    second = service.initiate_payment(booking.id, "guest-1")

    assert second.order_id == first.order_id
    assert gateway.create_calls == 1
    assert service.held_nights(booking.id) == 2


def test_initiate_requires_owner(service, make_booking):
    booking = make_booking(user_id="guest-1")

    with pytest.raises(ForbiddenError):
        service.initiate_payment(booking.id, "guest-2")
    assert service.held_nights(booking.id) == 0


def test_initiate_unknown_booking(service):
    with pytest.raises(BookingNotFoundError):
        service.initiate_payment("missing", "guest-1")


def test_gateway_failure_keeps_draft_and_frees_nights(service, make_booking, gateway):
    booking = make_booking()
    gateway.fail_next = True

    with pytest.raises(GatewayUnavailableError):
        service.initiate_payment(booking.id, "guest-1")

    assert service.get_booking(booking.id, "guest-1").status == BookingStatus.DRAFT
    assert service.held_nights(booking.id) == 0

    order = service.initiate_payment(booking.id, "guest-1")
    assert order.amount == booking.total_amount_minor
    assert service.get_booking(booking.id, "guest-1").status == BookingStatus.PENDING


def test_gateway_order_reused_after_lost_commit(service, make_booking, gateway, session_factory):
    booking = make_booking()
    first = service.coordinator.create_order(booking.id, booking.total_amount_minor)

    # Booking is still DRAFT, as if the process died before the status swap.
    order = service.initiate_payment(booking.id, "guest-1")

    assert order.order_id == first.order_id
    assert gateway.create_calls == 1
    with get_db_session(session_factory) as db:
        assert len(PaymentAttemptRepository(db).list_for_booking(booking.id)) == 1


# ---------------------
# VERIFY PAYMENT
# ---------------------

def test_verify_twice_confirms_once(service, make_booking, signer, session_factory):
    booking, order = _pending(service, make_booking)
    signature = signer(order.order_id, "pay_001")

    first = service.verify_payment(booking.id, "guest-1", "pay_001", signature)
    second = service.verify_payment(booking.id, "guest-1", "pay_001", signature)

    assert first.status == second.status == BookingStatus.CONFIRMED
    assert second.version == first.version
    assert _events(session_factory, booking.id).count("BOOKING_CONFIRMED") == 1


@pytest.mark.parametrize("tamper", ["wrong_secret", "wrong_payment", "garbage"])
def test_bad_signature_never_confirms(service, make_booking, signer, tamper):
    booking, order = _pending(service, make_booking)
    signature = {
        "wrong_secret": signer(order.order_id, "pay_001", "not_the_secret"),
        "wrong_payment": signer(order.order_id, "pay_999"),
        "garbage": "deadbeef",
    }[tamper]

    with pytest.raises(SignatureMismatchError) as excinfo:
        service.verify_payment(booking.id, "guest-1", "pay_001", signature)

    assert not excinfo.value.payment_failed
    after = service.get_booking(booking.id, "guest-1")
    assert after.status == BookingStatus.PENDING
    assert after.verify_attempt_count == 1
    assert after.gateway_payment_id is None


def test_mismatched_order_id_counts_as_failed_attempt(service, make_booking, signer):
    booking, order = _pending(service, make_booking)

    with pytest.raises(SignatureMismatchError):
        service.verify_payment(
            booking.id,
            "guest-1",
            "pay_001",
            signer(order.order_id, "pay_001"),
            gateway_order_id="order_someone_else",
        )

    assert service.get_booking(booking.id, "guest-1").status == BookingStatus.PENDING


def test_scenario_d_too_many_bad_signatures_fail_payment(
    service, make_booking, settings
):
    booking, _ = _pending(service, make_booking)

    for attempt in range(1, settings.max_verify_attempts + 1):
        with pytest.raises(SignatureMismatchError) as excinfo:
            service.verify_payment(booking.id, "guest-1", f"pay_{attempt}", "bad")
        assert not excinfo.value.payment_failed

    with pytest.raises(SignatureMismatchError) as excinfo:
        service.verify_payment(booking.id, "guest-1", "pay_last", "bad")
    assert excinfo.value.payment_failed

    failed = service.get_booking(booking.id, "guest-1")
    assert failed.status == BookingStatus.PAYMENT_FAILED
    assert failed.verify_attempt_count == settings.max_verify_attempts + 1
    assert service.held_nights(booking.id) == 0

    other = make_booking(user_id="guest-2")
    assert service.initiate_payment(other.id, "guest-2").amount == 39200


def test_verify_after_payment_failed_is_invalid_transition(
    service, make_booking, settings, signer
):
    booking, order = _pending(service, make_booking)
    for attempt in range(settings.max_verify_attempts + 1):
        with pytest.raises(SignatureMismatchError):
            service.verify_payment(booking.id, "guest-1", f"pay_{attempt}", "bad")

    with pytest.raises(InvalidStateTransitionError):
        service.verify_payment(
            booking.id, "guest-1", "pay_ok", signer(order.order_id, "pay_ok")
        )


def test_verify_on_draft_is_invalid_transition(service, make_booking):
    booking = make_booking()

    with pytest.raises(InvalidStateTransitionError):
        service.verify_payment(booking.id, "guest-1", "pay_001", "sig")


def test_payment_id_cannot_confirm_two_bookings(service, make_booking, signer):
    first, first_order = _pending(service, make_booking)
    second, second_order = _pending(
        service, make_booking, user_id="guest-2", check_in="2024-06-01", check_out="2024-06-02"
    )
    service.verify_payment(
        first.id, "guest-1", "pay_shared", signer(first_order.order_id, "pay_shared")
    )

    with pytest.raises(SignatureMismatchError):
        service.verify_payment(
            second.id, "guest-2", "pay_shared", signer(second_order.order_id, "pay_shared")
        )

    assert service.get_booking(second.id, "guest-2").status == BookingStatus.PENDING


def test_verify_records_payment_attempts(service, make_booking, signer, session_factory):
    booking, order = _pending(service, make_booking)
    with pytest.raises(SignatureMismatchError):
        service.verify_payment(booking.id, "guest-1", "pay_bad", "bad")
    service.verify_payment(booking.id, "guest-1", "pay_ok", signer(order.order_id, "pay_ok"))

    with get_db_session(session_factory) as db:
        attempts = PaymentAttemptRepository(db).list_for_booking(booking.id)

    assert [(a.sequence, a.gateway_payment_id, a.signature_valid) for a in attempts] == [
        (1, "pay_bad", False),
        (2, "pay_ok", True),
    ]
    assert all(a.gateway_order_id == order.order_id for a in attempts)


def test_non_ascii_signature_counts_as_failed_attempt(
    service, make_booking, session_factory, settings, clock
):
    booking, _ = _pending(service, make_booking)
    razorpay_service = BookingService(
        session_factory=session_factory,
        gateway=RazorpayGateway(key_id="rzp_test_key", key_secret="test_secret"),
        settings=settings,
        clock=clock,
    )

    for attempt in range(1, settings.max_verify_attempts + 2):
        with pytest.raises(SignatureMismatchError) as excinfo:
            razorpay_service.verify_payment(booking.id, "guest-1", "pay_001", "sigé")
        assert excinfo.value.attempts == attempt

    failed = service.get_booking(booking.id, "guest-1")
    assert failed.status == BookingStatus.PAYMENT_FAILED
    assert service.held_nights(booking.id) == 0


# ---------------------
# CANCEL
# ---------------------

def test_cancel_pending_releases_without_refund(service, make_booking):
    booking, _ = _pending(service, make_booking)

    cancelled = service.cancel_booking(booking.id, "guest-1", "Change of plans")

    assert cancelled.status == BookingStatus.CANCELLED
    assert not cancelled.refund_eligible
    assert cancelled.cancel_reason == "Change of plans"
    assert service.held_nights(booking.id) == 0


def test_cancel_confirmed_flags_refund_and_frees_room(service, make_booking, signer):
    booking, order = _pending(service, make_booking)
    service.verify_payment(booking.id, "guest-1", "pay_001", signer(order.order_id, "pay_001"))

    cancelled = service.cancel_booking(booking.id, "guest-1", "User requested cancellation")

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.refund_eligible
    assert service.is_available("R101", date(2024, 5, 1), date(2024, 5, 3))


def test_cancel_twice_is_idempotent(service, make_booking, session_factory):
    booking, _ = _pending(service, make_booking)

    first = service.cancel_booking(booking.id, "guest-1", "first")
    second = service.cancel_booking(booking.id, "guest-1", "second")

    assert second.status == BookingStatus.CANCELLED
    assert second.cancel_reason == "first"
    assert second.version == first.version
    assert _events(session_factory, booking.id).count("BOOKING_CANCELLED") == 1


def test_cancel_draft_is_invalid_transition(service, make_booking):
    booking = make_booking()

    with pytest.raises(InvalidStateTransitionError):
        service.cancel_booking(booking.id, "guest-1", None)


def test_cancel_requires_owner(service, make_booking):
    booking, _ = _pending(service, make_booking)

    with pytest.raises(ForbiddenError):
        service.cancel_booking(booking.id, "intruder", None)
    assert service.held_nights(booking.id) == 2


# ---------------------
# QUERIES
# ---------------------

def test_list_bookings_filters_by_owner_and_status(service, make_booking):
    _pending(service, make_booking)
    make_booking(check_in="2024-07-01", check_out="2024-07-02")
    make_booking(user_id="guest-2", check_in="2024-08-01", check_out="2024-08-02")

    listing = service.list_bookings("guest-1")
    pending = service.list_bookings("guest-1", BookingStatus.PENDING)

    assert len(listing.bookings) == 2
    assert listing.total == 2
    assert listing.counts == {BookingStatus.PENDING: 1, BookingStatus.DRAFT: 1}
    assert [item.status for item in pending.bookings] == [BookingStatus.PENDING]
    assert pending.total == 1


def test_list_bookings_pages_newest_first(service, make_booking, clock):
    created = []
    for day in range(1, 6):
        created.append(
            make_booking(check_in=f"2024-07-{day:02d}", check_out=f"2024-07-{day + 1:02d}").id
        )
        clock.advance(minutes=1)

    first = service.list_bookings("guest-1", page=1, limit=2)
    last = service.list_bookings("guest-1", page=3, limit=2)
    beyond = service.list_bookings("guest-1", page=4, limit=2)

    assert [item.id for item in first.bookings] == created[::-1][:2]
    assert [item.id for item in last.bookings] == [created[0]]
    assert beyond.bookings == []
    assert first.total == last.total == 5
    assert first.total_pages == 3


def test_list_bookings_rejects_bad_paging(service):
    with pytest.raises(InvalidRequestError):
        service.list_bookings("guest-1", page=0)
    with pytest.raises(InvalidRequestError):
        service.list_bookings("guest-1", limit=0)


def test_total_spent_sums_confirmed_bookings_only(service, make_booking, signer):
    paid, order = _pending(service, make_booking, total_amount=39200)
    service.verify_payment(paid.id, "guest-1", "pay_001", signer(order.order_id, "pay_001"))
    refunded, refund_order = _pending(
        service, make_booking, check_in="2024-06-01", check_out="2024-06-02", total_amount=15000
    )
    service.verify_payment(
        refunded.id, "guest-1", "pay_002", signer(refund_order.order_id, "pay_002")
    )
    service.cancel_booking(refunded.id, "guest-1", "plans changed")
    _pending(service, make_booking, check_in="2024-07-01", check_out="2024-07-02", total_amount=9900)

    listing = service.list_bookings("guest-1")

    assert listing.total_spent_minor == 39200
