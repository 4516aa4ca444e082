# hotel_booking/domain/exceptions.py


class HotelBookingError(Exception):
    """
    Base exception for all domain-level errors
    inside the hotel booking core.
    """


class InvalidRequestError(HotelBookingError):
    """Raised for bad dates, guest counts, amounts or unknown rooms."""


class BookingNotFoundError(HotelBookingError):
    """Raised when a booking id does not exist."""

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking not found: {booking_id}")


class ForbiddenError(HotelBookingError):
    """Raised when the caller does not own the booking."""


class InvalidStateTransitionError(HotelBookingError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class RoomUnavailableError(HotelBookingError):
    """Raised when at least one requested room-night is already held."""


class SignatureMismatchError(HotelBookingError):
    """Raised when a payment callback fails verification."""

    def __init__(self, booking_id: str, attempts: int, payment_failed: bool):
        self.booking_id = booking_id
        self.attempts = attempts
        self.payment_failed = payment_failed

        message = f"Payment signature mismatch for booking {booking_id}"
        if payment_failed:
            message += "; maximum verification attempts exceeded"
        super().__init__(message)


class GatewayUnavailableError(HotelBookingError):
    """Raised when the payment gateway cannot be reached. Safe to retry."""


class ConcurrentModificationError(HotelBookingError):
    """Raised when a booking changed underneath a transition."""
