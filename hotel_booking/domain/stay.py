# hotel_booking/domain/stay.py

from datetime import date, datetime, timedelta, timezone

from hotel_booking.domain.exceptions import InvalidRequestError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_stay(check_in: date, check_out: date) -> None:
    if check_out <= check_in:
        raise InvalidRequestError("check_out must be after check_in")


def nights(check_in: date, check_out: date) -> list[date]:
    """Calendar nights in [check_in, check_out)."""
    validate_stay(check_in, check_out)
    return [
        check_in + timedelta(days=offset)
        for offset in range((check_out - check_in).days)
    ]
