from datetime import date
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from hotel_booking.api.dependencies import (
    get_booking_service,
    get_caller_id,
    get_db,
    require_gateway_keys,
)
from hotel_booking.api.schemas.schemas import (
    AvailabilityResponse,
    BookingListResponse,
    BookingResponse,
    CancelBookingRequest,
    CreateBookingRequest,
    OutboxEventResponse,
    PaginationResponse,
    PaymentOrderResponse,
    RoomResponse,
    SeedRoomRequest,
    VerifyPaymentRequest,
)
from hotel_booking.application.booking_service import BookingService
from hotel_booking.domain.exceptions import (
    BookingNotFoundError,
    ConcurrentModificationError,
    ForbiddenError,
    GatewayUnavailableError,
    HotelBookingError,
    InvalidRequestError,
    InvalidStateTransitionError,
    RoomUnavailableError,
    SignatureMismatchError,
)
from hotel_booking.domain.state_machine import BookingStatus
from hotel_booking.infrastructure.repositories.outbox_repository import OutboxRepository
from hotel_booking.infrastructure.repositories.room_repository import RoomRepository


router = APIRouter()
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[HotelBookingError], int]] = [
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
    (SignatureMismatchError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (BookingNotFoundError, status.HTTP_404_NOT_FOUND),
    (RoomUnavailableError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (GatewayUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _http_error(exc: HotelBookingError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
    )


@router.get("/health")
def health():
    return {"message": "Hotel booking core is running"}


@router.post("/rooms/seed", response_model=RoomResponse)
def seed_room(
    request: SeedRoomRequest,
    db: Session = Depends(get_db),
):
    room = RoomRepository(db).create_or_update(
        room_id=request.room_id,
        hotel_id=request.hotel_id,
        room_number=request.room_number,
        capacity=request.capacity,
        room_type=request.room_type,
    )
    return RoomResponse(
        room_id=room.id,
        hotel_id=room.hotel_id,
        room_number=room.room_number,
        room_type=room.room_type,
        capacity=room.capacity,
    )


@router.get("/rooms/{room_id}/availability", response_model=AvailabilityResponse)
def room_availability(
    room_id: str,
    check_in: date,
    check_out: date,
    service: BookingService = Depends(get_booking_service),
):
    try:
        available = service.is_available(room_id, check_in, check_out)
    except HotelBookingError as exc:
        raise _http_error(exc) from exc

    return AvailabilityResponse(
        room_id=room_id,
        check_in=check_in,
        check_out=check_out,
        available=available,
    )


@router.post("/bookings", response_model=BookingResponse)
def create_booking(
    request: CreateBookingRequest,
    caller_id: str = Depends(get_caller_id),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.create_booking(
            user_id=caller_id,
            hotel_id=request.hotel_id,
            room_id=request.room_id,
            check_in=request.check_in,
            check_out=request.check_out,
            guest_count=request.guest_count,
            total_amount=request.total_amount,
        )
    except HotelBookingError as exc:
        raise _http_error(exc) from exc

    return BookingResponse.from_booking(booking)


@router.get("/bookings", response_model=BookingListResponse)
def list_bookings(
    status_filter: BookingStatus | None = None,
    page: int = 1,
    limit: int = 10,
    caller_id: str = Depends(get_caller_id),
    service: BookingService = Depends(get_booking_service),
):
    try:
        listing = service.list_bookings(caller_id, status_filter, page=page, limit=limit)
    except HotelBookingError as exc:
        raise _http_error(exc) from exc

    stats = {item.value: listing.counts.get(item, 0) for item in BookingStatus}
    stats["total"] = sum(listing.counts.values())
    return BookingListResponse(
        bookings=[BookingResponse.from_booking(item) for item in listing.bookings],
        stats=stats,
        pagination=PaginationResponse(
            page=listing.page,
            limit=listing.limit,
            total=listing.total,
            total_pages=listing.total_pages,
        ),
        total_spent_minor=listing.total_spent_minor,
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    caller_id: str = Depends(get_caller_id),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.get_booking(booking_id, caller_id)
    except HotelBookingError as exc:
        raise _http_error(exc) from exc

    return BookingResponse.from_booking(booking)


@router.post(
    "/bookings/{booking_id}/payment/create-order",
    response_model=PaymentOrderResponse,
    dependencies=[Depends(require_gateway_keys)],
)
def initiate_payment(
    booking_id: str,
    caller_id: str = Depends(get_caller_id),
    service: BookingService = Depends(get_booking_service),
):
    try:
        order = service.initiate_payment(booking_id, caller_id)
    except HotelBookingError as exc:
        raise _http_error(exc) from exc

    return PaymentOrderResponse(
        booking_id=booking_id,
        status=BookingStatus.PENDING.value,
        key=order.key,
        amount=order.amount,
        currency=order.currency,
        order_id=order.order_id,
        name=order.name,
        description=order.description,
        notes=order.notes,
    )


@router.post(
    "/bookings/{booking_id}/payment/verify",
    response_model=BookingResponse,
    dependencies=[Depends(require_gateway_keys)],
)
def verify_payment(
    booking_id: str,
    request: VerifyPaymentRequest,
    caller_id: str = Depends(get_caller_id),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.verify_payment(
            booking_id=booking_id,
            caller_id=caller_id,
            gateway_payment_id=request.razorpay_payment_id,
            gateway_signature=request.razorpay_signature,
            gateway_order_id=request.razorpay_order_id,
        )
    except HotelBookingError as exc:
        raise _http_error(exc) from exc

    return BookingResponse.from_booking(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    request: CancelBookingRequest,
    caller_id: str = Depends(get_caller_id),
    service: BookingService = Depends(get_booking_service),
):
    try:
        booking = service.cancel_booking(
            booking_id=booking_id,
            caller_id=caller_id,
            reason=request.reason,
        )
    except HotelBookingError as exc:
        raise _http_error(exc) from exc

    return BookingResponse.from_booking(booking)


@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    events = OutboxRepository(db).list_by_status(status_filter, limit)
    return [OutboxEventResponse.from_event(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: str,
    db: Session = Depends(get_db),
):
    item = OutboxRepository(db).mark_published(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )
    return OutboxEventResponse.from_event(item)
