import os

# Must be set before hotel_booking builds its module-level engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REAPER_ENABLED", "false")

from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import threading

import pytest
from fastapi.testclient import TestClient

from hotel_booking.api.dependencies import (
    get_booking_service,
    get_db,
    get_session_factory,
    razorpay_gateway,
    require_gateway_keys,
)
from hotel_booking.application.booking_service import BookingService
from hotel_booking.config import Settings
from hotel_booking.domain.exceptions import GatewayUnavailableError
from hotel_booking.infrastructure.db.models import Base
from hotel_booking.infrastructure.db.session import (
    build_engine,
    build_session_factory,
    get_db_session,
)
from hotel_booking.infrastructure.gateway.razorpay_gateway import GatewayOrder
from hotel_booking.infrastructure.repositories.room_repository import RoomRepository
from hotel_booking.main import app

GATEWAY_SECRET = "test_secret"
HOTEL_ID = "H1"


def _sign(order_id: str, payment_id: str, secret: str = GATEWAY_SECRET) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        f"{order_id}|{payment_id}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


class FakeGateway:
    key_id = "rzp_test_key"

    def __init__(self, secret: str = GATEWAY_SECRET):
        self.secret = secret
        self.orders: dict[str, GatewayOrder] = {}
        self.create_calls = 0
        self.fail_next = False
        self._lock = threading.Lock()

    def create_order(self, amount, currency, idempotency_key, notes=None):
        with self._lock:
            self.create_calls += 1
            if self.fail_next:
                self.fail_next = False
                raise GatewayUnavailableError("Payment gateway unavailable")

            existing = self.orders.get(idempotency_key)
            if existing:
                return existing

            order = GatewayOrder(
                order_id=f"order_{len(self.orders) + 1:06d}",
                amount=amount,
                currency=currency,
            )
            self.orders[idempotency_key] = order
            return order

    def verify_signature(self, order_id, payment_id, signature):
        return hmac.compare_digest(_sign(order_id, payment_id, self.secret), signature)


class FrozenClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'hotel_booking.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def settings():
    return Settings(
        hold_ttl_minutes=15,
        draft_ttl_hours=24,
        max_verify_attempts=3,
        reaper_enabled=False,
        razorpay_key_id=FakeGateway.key_id,
        razorpay_key_secret=GATEWAY_SECRET,
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 4, 20, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def signer():
    return _sign


@pytest.fixture
def rooms(session_factory):
    with get_db_session(session_factory) as db:
        repo = RoomRepository(db)
        repo.create_or_update(room_id="R101", hotel_id=HOTEL_ID, room_number="101", capacity=2)
        repo.create_or_update(room_id="R102", hotel_id=HOTEL_ID, room_number="102", capacity=4)
    return ["R101", "R102"]


@pytest.fixture
def service(session_factory, gateway, settings, clock, rooms):
    return BookingService(
        session_factory=session_factory,
        gateway=gateway,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def make_booking(service):
    def _make(
        user_id="guest-1",
        room_id="R101",
        check_in="2024-05-01",
        check_out="2024-05-03",
        guest_count=2,
        total_amount=39200,
    ):
        return service.create_booking(
            user_id=user_id,
            hotel_id=HOTEL_ID,
            room_id=room_id,
            check_in=datetime.fromisoformat(check_in).date(),
            check_out=datetime.fromisoformat(check_out).date(),
            guest_count=guest_count,
            total_amount=total_amount,
        )

    return _make


def _db_override(session_factory):
    def _test_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return _test_db


@pytest.fixture
def client(service, session_factory):
    app.dependency_overrides[get_booking_service] = lambda: service
    app.dependency_overrides[get_db] = _db_override(session_factory)
    app.dependency_overrides[require_gateway_keys] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def keyless_client(session_factory, rooms, monkeypatch):
    """Real dependency wiring with no Razorpay keys configured."""
    monkeypatch.setattr(
        "hotel_booking.api.dependencies.settings",
        Settings(razorpay_key_id=None, razorpay_key_secret=None),
    )
    razorpay_gateway.cache_clear()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_db] = _db_override(session_factory)
    yield TestClient(app)
    app.dependency_overrides.clear()
    razorpay_gateway.cache_clear()
