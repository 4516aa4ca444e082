# hotel_booking/application/expiry_reaper.py

from dataclasses import dataclass, field
from datetime import datetime
import logging
import threading

from hotel_booking.application.booking_service import BookingService
from hotel_booking.domain.exceptions import (
    BookingNotFoundError,
    ConcurrentModificationError,
    InvalidStateTransitionError,
)

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    expired: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    released_draft_nights: int = 0


class ExpiryReaper:
    """
    Periodically demotes stale DRAFT/PENDING bookings to EXPIRED.

    The scan is only a candidate list: every booking is re-checked
    inside BookingService.expire_booking, and anything that fails is
    simply picked up again on the next sweep.
    """

    def __init__(self, service: BookingService, interval_seconds: float = 60.0):
        self.service = service
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or self.service.clock()
        result = SweepResult()

        try:
            candidates = self.service.find_expirable(now)
        except Exception:
            logger.exception("Expiry scan failed; retrying next sweep.")
            return result

        for booking_id in candidates:
            try:
                if self.service.expire_booking(booking_id, now=now):
                    result.expired.append(booking_id)
                else:
                    result.skipped.append(booking_id)
            except (
                BookingNotFoundError,
                InvalidStateTransitionError,
                ConcurrentModificationError,
            ):
                # Confirmed, cancelled or already expired since the scan.
                result.skipped.append(booking_id)
            except Exception:
                logger.exception("Failed to expire booking. booking_id=%s", booking_id)
                result.failed.append(booking_id)

        try:
            result.released_draft_nights = self.service.release_lapsed_draft_holds(now)
        except Exception:
            logger.exception("Releasing lapsed DRAFT holds failed; retrying next sweep.")

        if result.expired or result.failed or result.released_draft_nights:
            logger.info(
                "Expiry sweep done. expired=%s skipped=%s failed=%s released_draft_nights=%s",
                len(result.expired),
                len(result.skipped),
                len(result.failed),
                result.released_draft_nights,
            )
        return result

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="expiry-reaper",
            daemon=True,
        )
        self._thread.start()
        logger.info("Expiry reaper started. interval_seconds=%s", self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Expiry reaper stopped.")

    def _run(self) -> None:
        while not self._stop.is_set():
            self.sweep()
            self._stop.wait(self.interval_seconds)
