# hotel_booking/infrastructure/repositories/room_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from hotel_booking.infrastructure.db.models import Room


class RoomRepository:
    """Read side of the room catalog, used for the capacity check."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, hotel_id: str, room_id: str) -> Room | None:
        stmt = (
            select(Room)
            .where(Room.id == room_id)
            .where(Room.hotel_id == hotel_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_capacity(self, hotel_id: str, room_id: str) -> int | None:
        room = self.get(hotel_id, room_id)
        return room.capacity if room else None

    def create_or_update(
        self,
        room_id: str,
        hotel_id: str,
        room_number: str,
        capacity: int,
        room_type: str = "STANDARD",
    ) -> Room:
        room = self.db.get(Room, room_id)

        if room:
            room.hotel_id = hotel_id
            room.room_number = room_number
            room.capacity = capacity
            room.room_type = room_type
            return room

        room = Room(
            id=room_id,
            hotel_id=hotel_id,
            room_number=room_number,
            capacity=capacity,
            room_type=room_type,
        )
        self.db.add(room)
        return room
