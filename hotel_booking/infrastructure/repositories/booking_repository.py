# hotel_booking/infrastructure/repositories/booking_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import and_, func, or_, select, update

from hotel_booking.infrastructure.db.models import Booking, RoomNightHold
from hotel_booking.domain.state_machine import BookingStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_by_id(self, booking_id: str) -> Booking | None:
        """
        SELECT ... FOR UPDATE, re-reading the row even if the
        session already has it.
        """

        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def compare_and_set(
        self,
        booking_id: str,
        expected_status: BookingStatus,
        expected_version: int,
        **values,
    ) -> bool:
        """
        UPDATE ... WHERE status = expected AND version = seen.
        Returns False when another writer got there first.
        """

        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.status == expected_status)
            .where(Booking.version == expected_version)
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def find_drafts_with_lapsed_holds(self, now: datetime) -> list[str]:
        """DRAFT bookings still owning holds from an interrupted payment start."""

        stmt = (
            select(RoomNightHold.booking_id)
            .join(Booking, Booking.id == RoomNightHold.booking_id)
            .where(Booking.status == BookingStatus.DRAFT)
            .where(RoomNightHold.held_until.is_not(None))
            .where(RoomNightHold.held_until < now)
            .distinct()
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_user(
        self,
        user_id: str,
        status: BookingStatus | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Booking]:
        stmt = self._for_user(select(Booking), user_id, status)
        stmt = stmt.order_by(Booking.created_at.desc(), Booking.id).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def count_for_user(
        self,
        user_id: str,
        status: BookingStatus | None = None,
    ) -> int:
        stmt = self._for_user(select(func.count(Booking.id)), user_id, status)
        return self.db.execute(stmt).scalar_one()

    def total_spent_minor(self, user_id: str) -> int:
        stmt = (
            select(func.coalesce(func.sum(Booking.total_amount_minor), 0))
            .where(Booking.user_id == user_id)
            .where(Booking.status == BookingStatus.CONFIRMED)
        )
        return int(self.db.execute(stmt).scalar_one())

    def count_by_status(self, user_id: str) -> dict[BookingStatus, int]:
        stmt = (
            select(Booking.status, func.count(Booking.id))
            .where(Booking.user_id == user_id)
            .group_by(Booking.status)
        )
        return {status: count for status, count in self.db.execute(stmt).all()}

    def find_expirable_ids(
        self,
        now: datetime,
        draft_created_before: datetime,
        limit: int = 500,
    ) -> list[str]:
        """Snapshot only; expire() re-checks each row."""

        stmt = (
            select(Booking.id)
            .where(Booking.status.in_([BookingStatus.DRAFT, BookingStatus.PENDING]))
            .where(
                or_(
                    and_(Booking.expires_at.is_not(None), Booking.expires_at < now),
                    and_(
                        Booking.expires_at.is_(None),
                        Booking.status == BookingStatus.DRAFT,
                        Booking.created_at < draft_created_before,
                    ),
                )
            )
            .order_by(Booking.created_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    @staticmethod
    def _for_user(stmt, user_id: str, status: BookingStatus | None):
        stmt = stmt.where(Booking.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        return stmt
