from hotel_booking.infrastructure.db.models import Base
from hotel_booking.infrastructure.db.session import engine, get_db_session
from hotel_booking.infrastructure.repositories.room_repository import RoomRepository


def seed_rooms(db) -> None:
    room_defs = [
        {
            "hotel_id": "sojourn-goa",
            "rooms": [
                {"room_id": "R101", "room_number": "101", "room_type": "DELUXE", "capacity": 2},
                {"room_id": "R102", "room_number": "102", "room_type": "DELUXE", "capacity": 2},
                {"room_id": "R201", "room_number": "201", "room_type": "SUITE", "capacity": 4},
            ],
        },
        {
            "hotel_id": "sojourn-jaipur",
            "rooms": [
                {"room_id": "J101", "room_number": "101", "room_type": "STANDARD", "capacity": 2},
                {"room_id": "J301", "room_number": "301", "room_type": "FAMILY", "capacity": 5},
            ],
        },
    ]

    repo = RoomRepository(db)
    for hotel in room_defs:
        for room in hotel["rooms"]:
            repo.create_or_update(
                room_id=room["room_id"],
                hotel_id=hotel["hotel_id"],
                room_number=room["room_number"],
                capacity=room["capacity"],
                room_type=room["room_type"],
            )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_rooms(db)
    print("Seeded demo rooms.")


if __name__ == "__main__":
    main()
