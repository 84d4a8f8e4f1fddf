"""Error taxonomy shared by the reservation engine and the HTTP layer."""

from typing import Any, Dict, Iterable, Optional


class BookingError(Exception):
    """Base error carrying the HTTP status and any extra response fields."""

    status_code = 500

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.payload}


class InvalidInput(BookingError):
    status_code = 400

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"details": details} if details else None)


class Forbidden(BookingError):
    status_code = 403


class NotFound(BookingError):
    status_code = 404


class SeatsUnavailable(BookingError):
    """Some requested seats are already occupied; nothing was reserved."""

    status_code = 409

    def __init__(self, seats: Iterable[str]):
        self.seats = list(seats)
        super().__init__("some seats are already booked", {"unavailable_seats": self.seats})


class AlreadyCancelled(BookingError):
    status_code = 409

    def __init__(self, booking_id: str):
        super().__init__("booking already cancelled", {"booking_id": booking_id})


class Busy(BookingError):
    """Optimistic retry budget exhausted; safe to retry after a short wait."""

    status_code = 503

    def __init__(self, retry_after: int = 1):
        self.retry_after = retry_after
        super().__init__("showtime is busy, please retry", {"retry_after": retry_after})
