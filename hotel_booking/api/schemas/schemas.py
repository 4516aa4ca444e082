from datetime import date, datetime

from pydantic import BaseModel, Field

from hotel_booking.infrastructure.db.models import Booking, OutboxEvent


class CreateBookingRequest(BaseModel):
    hotel_id: str
    room_id: str
    check_in: date
    check_out: date
    guest_count: int
    total_amount: int = Field(description="Total price in minor currency units")


class BookingResponse(BaseModel):
    booking_id: str
    status: str
    hotel_id: str
    room_id: str
    check_in: date
    check_out: date
    guest_count: int
    total_amount: int
    currency: str
    expires_at: datetime | None = None
    payment_order_id: str | None = None
    verify_attempt_count: int = 0
    refund_eligible: bool = False
    cancel_reason: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            booking_id=booking.id,
            status=booking.status.value,
            hotel_id=booking.hotel_id,
            room_id=booking.room_id,
            check_in=booking.check_in,
            check_out=booking.check_out,
            guest_count=booking.guest_count,
            total_amount=booking.total_amount_minor,
            currency=booking.currency,
            expires_at=booking.expires_at,
            payment_order_id=booking.payment_order_id,
            verify_attempt_count=booking.verify_attempt_count,
            refund_eligible=booking.refund_eligible,
            cancel_reason=booking.cancel_reason,
            created_at=booking.created_at,
        )


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    stats: dict[str, int]
    pagination: PaginationResponse
    total_spent_minor: int = 0


class PaymentOrderResponse(BaseModel):
    booking_id: str
    status: str
    key: str
    amount: int
    currency: str
    order_id: str
    name: str
    description: str
    notes: dict[str, str] = Field(default_factory=dict)


class VerifyPaymentRequest(BaseModel):
    razorpay_payment_id: str
    razorpay_signature: str
    razorpay_order_id: str | None = None


class CancelBookingRequest(BaseModel):
    reason: str | None = None


class SeedRoomRequest(BaseModel):
    room_id: str
    hotel_id: str
    room_number: str
    capacity: int = Field(gt=0)
    room_type: str = "STANDARD"


class RoomResponse(BaseModel):
    room_id: str
    hotel_id: str
    room_number: str
    room_type: str
    capacity: int


class AvailabilityResponse(BaseModel):
    room_id: str
    check_in: date
    check_out: date
    available: bool


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    created_at: str

    @classmethod
    def from_event(cls, item: OutboxEvent) -> "OutboxEventResponse":
        return cls(
            id=item.id,
            aggregate_type=item.aggregate_type,
            aggregate_id=item.aggregate_id,
            event_type=item.event_type,
            status=item.status,
            attempts=item.attempts,
            created_at=item.created_at.isoformat(),
        )
