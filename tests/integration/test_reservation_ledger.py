from datetime import date, datetime, timedelta, timezone

from hotel_booking.application.reservation_ledger import ReservationLedger
from hotel_booking.infrastructure.db.session import get_db_session

HELD_UNTIL = datetime(2024, 4, 20, 9, 15, tzinfo=timezone.utc)


def _acquire(session_factory, booking_id, check_in, check_out, room_id="R101"):
    with get_db_session(session_factory) as db:
        return ReservationLedger(db).try_acquire(
            room_id=room_id,
            check_in=check_in,
            check_out=check_out,
            booking_id=booking_id,
            held_until=HELD_UNTIL,
        )


def _held(session_factory, booking_id):
    with get_db_session(session_factory) as db:
        return ReservationLedger(db).held_nights(booking_id)


def test_acquire_creates_one_hold_per_night(session_factory):
    assert _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 4))

    with get_db_session(session_factory) as db:
        holds = ReservationLedger(db).holds_for("b1")

    assert [hold.night for hold in holds] == [
        date(2024, 5, 1),
        date(2024, 5, 2),
        date(2024, 5, 3),
    ]
    assert all(hold.held_until is not None for hold in holds)


def test_overlap_on_a_single_night_acquires_nothing(session_factory):
    assert _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 3))

    assert not _acquire(session_factory, "b2", date(2024, 5, 2), date(2024, 5, 6))
    assert _held(session_factory, "b2") == 0
    assert _held(session_factory, "b1") == 2


def test_back_to_back_stays_do_not_conflict(session_factory):
    assert _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 3))

    assert _acquire(session_factory, "b2", date(2024, 5, 3), date(2024, 5, 5))


def test_same_nights_on_another_room_do_not_conflict(session_factory):
    assert _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 3))

    assert _acquire(session_factory, "b2", date(2024, 5, 1), date(2024, 5, 3), room_id="R102")


def test_reacquire_by_same_booking_succeeds(session_factory):
    assert _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 3))

    assert _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 3))
    assert _held(session_factory, "b1") == 2


def test_confirm_makes_holds_permanent_and_is_idempotent(session_factory):
    _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 3))

    for _ in range(2):
        with get_db_session(session_factory) as db:
            assert ReservationLedger(db).confirm("b1") == 2

    with get_db_session(session_factory) as db:
        holds = ReservationLedger(db).holds_for("b1")
    assert all(hold.held_until is None for hold in holds)


def test_release_is_idempotent(session_factory):
    _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 3))

    with get_db_session(session_factory) as db:
        assert ReservationLedger(db).release("b1") == 2
    with get_db_session(session_factory) as db:
        assert ReservationLedger(db).release("b1") == 0

    assert _acquire(session_factory, "b2", date(2024, 5, 1), date(2024, 5, 3))


def test_is_available_reflects_current_holds(session_factory):
    _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 3))

    with get_db_session(session_factory) as db:
        ledger = ReservationLedger(db)
        assert not ledger.is_available("R101", date(2024, 5, 2), date(2024, 5, 4))
        assert ledger.is_available("R101", date(2024, 5, 3), date(2024, 5, 4))
        assert ledger.is_available("R101", date(2024, 4, 28), date(2024, 5, 1))


def test_failed_acquire_leaves_transaction_usable(session_factory):
    _acquire(session_factory, "b1", date(2024, 5, 1), date(2024, 5, 3))

    with get_db_session(session_factory) as db:
        ledger = ReservationLedger(db)
        assert not ledger.try_acquire(
            "R101", date(2024, 5, 1), date(2024, 5, 2), "b2", HELD_UNTIL + timedelta(minutes=1)
        )
        assert ledger.try_acquire(
            "R101", date(2024, 5, 10), date(2024, 5, 12), "b2", HELD_UNTIL
        )

    assert _held(session_factory, "b2") == 2
