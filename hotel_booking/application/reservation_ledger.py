# hotel_booking/application/reservation_ledger.py

from datetime import date, datetime
import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hotel_booking.domain.stay import nights
from hotel_booking.infrastructure.db.models import RoomNightHold

logger = logging.getLogger(__name__)


class ReservationLedger:
    """
    Authoritative registry of held and booked room-nights.

    Mutual exclusion rests on the UNIQUE (room_id, night) constraint:
    a batch of nights is inserted inside one savepoint and either every
    row lands or none do. Callers own the surrounding transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def try_acquire(
        self,
        room_id: str,
        check_in: date,
        check_out: date,
        booking_id: str,
        held_until: datetime | None,
    ) -> bool:
        stay_nights = nights(check_in, check_out)

        owned = self._owned_nights(room_id, booking_id)
        if owned == set(stay_nights):
            # Retry after a crash between acquire and the gateway call.
            self.db.execute(
                update(RoomNightHold)
                .where(RoomNightHold.booking_id == booking_id)
                .values(held_until=held_until)
            )
            return True
        if owned:
            self.release(booking_id)

        try:
            with self.db.begin_nested():
                self.db.add_all(
                    [
                        RoomNightHold(
                            room_id=room_id,
                            night=night,
                            booking_id=booking_id,
                            held_until=held_until,
                        )
                        for night in stay_nights
                    ]
                )
                self.db.flush()
        except IntegrityError:
            logger.info(
                "Room-night conflict. room_id=%s check_in=%s check_out=%s booking_id=%s",
                room_id,
                check_in,
                check_out,
                booking_id,
            )
            return False

        logger.info(
            "Acquired room-nights. room_id=%s nights=%s booking_id=%s",
            room_id,
            len(stay_nights),
            booking_id,
        )
        return True

    def confirm(self, booking_id: str) -> int:
        result = self.db.execute(
            update(RoomNightHold)
            .where(RoomNightHold.booking_id == booking_id)
            .values(held_until=None)
        )
        return result.rowcount

    def release(self, booking_id: str) -> int:
        result = self.db.execute(
            delete(RoomNightHold).where(RoomNightHold.booking_id == booking_id)
        )
        if result.rowcount:
            logger.info(
                "Released room-nights. booking_id=%s nights=%s",
                booking_id,
                result.rowcount,
            )
        return result.rowcount

    def is_available(self, room_id: str, check_in: date, check_out: date) -> bool:
        """Point-in-time answer; try_acquire may still lose a race."""

        stay_nights = nights(check_in, check_out)
        stmt = (
            select(func.count(RoomNightHold.id))
            .where(RoomNightHold.room_id == room_id)
            .where(RoomNightHold.night >= stay_nights[0])
            .where(RoomNightHold.night <= stay_nights[-1])
        )
        return self.db.execute(stmt).scalar_one() == 0

    def held_nights(self, booking_id: str) -> int:
        stmt = select(func.count(RoomNightHold.id)).where(
            RoomNightHold.booking_id == booking_id
        )
        return self.db.execute(stmt).scalar_one()

    def holds_for(self, booking_id: str) -> list[RoomNightHold]:
        stmt = (
            select(RoomNightHold)
            .where(RoomNightHold.booking_id == booking_id)
            .order_by(RoomNightHold.night)
        )
        return list(self.db.execute(stmt).scalars().all())

    def _owned_nights(self, room_id: str, booking_id: str) -> set[date]:
        stmt = (
            select(RoomNightHold.night)
            .where(RoomNightHold.booking_id == booking_id)
            .where(RoomNightHold.room_id == room_id)
        )
        return set(self.db.execute(stmt).scalars().all())
