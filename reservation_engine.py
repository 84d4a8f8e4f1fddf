"""Seat reservation engine: showtime provisioning, reserve and cancel.

Every mutation of a showtime's occupancy runs as one transaction that
re-reads the showtime row, checks, and writes it back. Two mechanisms keep
that read-check-write indivisible per showtime:

* ``SELECT ... FOR UPDATE`` locks the row on backends that support it, so
  concurrent writers on PostgreSQL queue behind each other.
* ``Showtime.version`` is a mapper ``version_id_col``; the UPDATE only matches
  the version that was read, so a writer that raced (SQLite, or a lock that
  was not taken) fails with ``StaleDataError`` and the whole transaction,
  booking row included, is rolled back and retried from a fresh read.

Different showtimes are different rows and never contend.
"""

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from typing import Dict, List, NamedTuple, Optional
import logging
import random
import time
import uuid

from database_manager import DatabaseManager, parse_id
from exceptions import AlreadyCancelled, Busy, InvalidInput, NotFound, SeatsUnavailable
from models import Booking, BookingStatus, Cinema, Showtime, utcnow
from seat_map import max_capacity, normalize_seats, sort_seats, validate_against_layout

logger = logging.getLogger(__name__)

# SQLite busy file, PostgreSQL lock_timeout / deadlock detector / serialization failure
TRANSIENT_LOCK_ERRORS = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "could not obtain lock",
    "deadlock detected",
    "could not serialize access",
)


class ShowtimeHandle(NamedTuple):
    showtime_id: Optional[uuid.UUID]
    cinema_id: uuid.UUID
    cinema_name: str
    movie_id: str
    show_date: str
    show_time: str
    price: int
    total_seats: int


def _find_showtime(session, cinema_id, movie_id, show_date, show_time):
    return session.query(Showtime).filter_by(
        cinema_id=cinema_id,
        movie_id=movie_id,
        show_date=show_date,
        show_time=show_time,
    ).first()


def _handle(cinema_name: str, showtime: Showtime) -> ShowtimeHandle:
    return ShowtimeHandle(
        showtime_id=showtime.showtime_id,
        cinema_id=showtime.cinema_id,
        cinema_name=cinema_name,
        movie_id=showtime.movie_id,
        show_date=showtime.show_date,
        show_time=showtime.show_time,
        price=showtime.price,
        total_seats=showtime.total_seats,
    )


def _require_text(name: str, value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{name} must be a non-empty string")
    return value.strip()


def _require_key(name: str, value) -> str:
    # Showtime keys are matched byte for byte, so they are checked but never rewritten
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{name} must be a non-empty string")
    return value


def _check_price(expected_price: Optional[int], price: int, seat_count: int) -> int:
    total_price = price * seat_count
    if expected_price is not None and expected_price != total_price:
        raise InvalidInput(
            "total price does not match the showtime price",
            details={"expected_total": total_price, "price_per_seat": price},
        )
    return total_price


def _is_transient(error: Exception) -> bool:
    """Lost version races and lock contention; anything else is a real storage failure."""
    if isinstance(error, StaleDataError):
        return True
    message = str(getattr(error, 'orig', error)).lower()
    return any(marker in message for marker in TRANSIENT_LOCK_ERRORS)


class ShowtimeProvisioner:
    """Get-or-create of showtime records keyed by (cinema, movie, date, time)."""

    def __init__(self, db: DatabaseManager, default_price: int = 200, seats_per_row: int = 10):
        self.db = db
        self.default_price = default_price
        self.seats_per_row = seats_per_row

    def preview_showtime(self, cinema_id, movie_id: str, show_date: str, show_time: str) -> ShowtimeHandle:
        """Handle for the tuple without writing anything.

        An existing showtime is returned as is; otherwise the handle describes
        the record that provisioning would create and has no ``showtime_id``.
        """
        cinema_uuid = parse_id(cinema_id, "cinema")

        with self.db.get_session() as session:
            cinema = session.get(Cinema, cinema_uuid)
            if not cinema:
                raise NotFound("cinema not found")

            showtime = _find_showtime(session, cinema_uuid, movie_id, show_date, show_time)
            if showtime:
                return _handle(cinema.name, showtime)

            self._check_capacity(cinema)
            return ShowtimeHandle(
                showtime_id=None,
                cinema_id=cinema_uuid,
                cinema_name=cinema.name,
                movie_id=movie_id,
                show_date=show_date,
                show_time=show_time,
                price=self.default_price,
                total_seats=cinema.total_seats,
            )

    def resolve_showtime(self, cinema_id, movie_id: str, show_date: str, show_time: str,
                         price: Optional[int] = None) -> ShowtimeHandle:
        """Return the showtime for the tuple, creating it from the cinema's capacity if absent.

        Date and time are matched as exact strings. Concurrent first callers
        race on the ``uq_showtime_slot`` constraint; losers re-read the
        winner's row, so every caller gets a handle to the same record.
        """
        cinema_uuid = parse_id(cinema_id, "cinema")

        with self.db.get_session() as session:
            cinema = session.get(Cinema, cinema_uuid)
            if not cinema:
                raise NotFound("cinema not found")
            cinema_name = cinema.name
            total_seats = cinema.total_seats

            showtime = _find_showtime(session, cinema_uuid, movie_id, show_date, show_time)
            if showtime:
                return _handle(cinema_name, showtime)
            self._check_capacity(cinema)

        try:
            with self.db.get_session() as session:
                showtime = Showtime(
                    cinema_id=cinema_uuid,
                    movie_id=movie_id,
                    show_date=show_date,
                    show_time=show_time,
                    price=self.default_price if price is None else price,
                    total_seats=total_seats,
                    available_seats=total_seats,
                    occupied_seats=[],
                )
                session.add(showtime)
                session.flush()
                handle = _handle(cinema_name, showtime)
            logger.info(f"Provisioned showtime {handle.showtime_id}: {movie_id} {show_date} {show_time} "
                        f"at cinema {cinema_uuid} ({total_seats} seats)")
            return handle
        except IntegrityError:
            logger.info(f"Showtime {movie_id} {show_date} {show_time} at cinema {cinema_uuid} "
                        f"was provisioned concurrently, re-reading")

        with self.db.get_session() as session:
            showtime = _find_showtime(session, cinema_uuid, movie_id, show_date, show_time)
            if not showtime:
                # Unique violation but no row: it was removed between our insert and re-read
                raise Busy()
            return _handle(cinema_name, showtime)

    def _check_capacity(self, cinema: Cinema):
        limit = max_capacity(self.seats_per_row)
        if cinema.total_seats > limit:
            raise InvalidInput(
                "cinema capacity exceeds the lettered seat map",
                details={"total_seats": cinema.total_seats, "max_seats": limit},
            )


class SeatReservationEngine:
    """All-or-nothing seat claims and their release, serialized per showtime."""

    def __init__(
        self,
        db: DatabaseManager,
        provisioner: Optional[ShowtimeProvisioner] = None,
        seats_per_row: int = 10,
        max_retries: int = 5,
        retry_backoff: float = 0.02,
    ):
        self.db = db
        self.provisioner = provisioner or ShowtimeProvisioner(db, seats_per_row=seats_per_row)
        self.seats_per_row = seats_per_row
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    def create_booking(
        self,
        cinema_id,
        movie_id: str,
        show_date: str,
        show_time: str,
        seats: List[str],
        user_id: str,
        movie_title: str,
        total_price: Optional[int] = None,
    ) -> Dict:
        """Resolve (or provision) the showtime, then reserve ``seats`` against it.

        The request is validated against the cinema's seat map and the
        showtime price before anything is written, so a rejected request
        never provisions a showtime.
        """
        movie_id = _require_key("movie id", movie_id)
        show_date = _require_key("show date", show_date)
        show_time = _require_key("show time", show_time)
        movie_title = _require_text("movie title", movie_title)
        user_id = _require_text("user id", user_id)
        seats = normalize_seats(seats)
        self._check_price_type(total_price)

        preview = self.provisioner.preview_showtime(cinema_id, movie_id, show_date, show_time)
        validate_against_layout(seats, preview.total_seats, self.seats_per_row)
        _check_price(total_price, preview.price, len(seats))

        handle = preview
        if handle.showtime_id is None:
            handle = self.provisioner.resolve_showtime(cinema_id, movie_id, show_date, show_time)
        return self.reserve(handle, seats, user_id, movie_title, total_price)

    def reserve(
        self,
        handle: ShowtimeHandle,
        requested_seats,
        user_id: str,
        movie_title: str,
        expected_price: Optional[int] = None,
    ) -> Dict:
        """Claim every seat in ``requested_seats`` and record a confirmed booking, or nothing.

        Raises SeatsUnavailable naming the already-occupied subset, InvalidInput
        for bad seats or a price quote that does not match the showtime,
        NotFound if the showtime disappeared, Busy when retries run out.
        """
        if isinstance(requested_seats, (set, frozenset, tuple)):
            requested_seats = list(requested_seats)
        seats = normalize_seats(requested_seats)
        validate_against_layout(seats, handle.total_seats, self.seats_per_row)
        user_id = _require_text("user id", user_id)
        movie_title = _require_text("movie title", movie_title)
        self._check_price_type(expected_price)

        return self._with_retries(
            "reserve",
            handle.showtime_id,
            lambda: self._try_reserve(handle, seats, user_id, movie_title, expected_price),
        )

    def _try_reserve(self, handle, seats, user_id, movie_title, expected_price) -> Dict:
        with self.db.get_session() as session:
            showtime = session.query(Showtime).filter_by(
                showtime_id=handle.showtime_id
            ).with_for_update().first()
            if not showtime:
                raise NotFound("showtime not found")

            total_price = _check_price(expected_price, showtime.price, len(seats))

            occupied = set(showtime.occupied_seats or [])
            conflict = occupied.intersection(seats)
            if conflict:
                logger.warning(f"Seat conflict on showtime {showtime.showtime_id}: {sort_seats(conflict)}")
                raise SeatsUnavailable(sort_seats(conflict))

            self._write_occupancy(showtime, occupied.union(seats))

            booking = Booking(
                user_id=user_id,
                cinema_id=showtime.cinema_id,
                cinema_name=handle.cinema_name,
                movie_id=showtime.movie_id,
                movie_title=movie_title,
                show_date=showtime.show_date,
                show_time=showtime.show_time,
                seat_ids=sort_seats(seats),
                total_price=total_price,
                status=BookingStatus.CONFIRMED,
            )
            session.add(booking)
            session.flush()
            result = booking.to_dict()

        logger.info(f"Booking confirmed: {result['booking_id']} seats={result['seat_ids']} "
                    f"showtime={handle.showtime_id} user={user_id}")
        return result

    def cancel(self, booking_id) -> Dict:
        """Mark a confirmed booking cancelled and release exactly its seats.

        A missing showtime does not block the cancellation; only the seat
        release is skipped.
        """
        booking_uuid = parse_id(booking_id, "booking")
        return self._with_retries("cancel", booking_uuid, lambda: self._try_cancel(booking_uuid))

    def _try_cancel(self, booking_uuid: uuid.UUID) -> Dict:
        with self.db.get_session() as session:
            booking = session.query(Booking).filter_by(
                booking_id=booking_uuid
            ).with_for_update().first()
            if not booking:
                raise NotFound("booking not found")
            if booking.status == BookingStatus.CANCELLED:
                raise AlreadyCancelled(str(booking.booking_id))

            showtime = session.query(Showtime).filter_by(
                cinema_id=booking.cinema_id,
                movie_id=booking.movie_id,
                show_date=booking.show_date,
                show_time=booking.show_time,
            ).with_for_update().first()

            if showtime:
                remaining = set(showtime.occupied_seats or []).difference(booking.seat_ids)
                self._write_occupancy(showtime, remaining)
            else:
                logger.warning(f"Showtime for booking {booking.booking_id} no longer exists; "
                               f"cancelling without releasing seats")

            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = utcnow()
            session.flush()
            result = booking.to_dict()

        logger.info(f"Booking cancelled: {result['booking_id']} released={result['seat_ids']}")
        return result

    @staticmethod
    def _check_price_type(expected_price):
        if expected_price is not None and (isinstance(expected_price, bool) or not isinstance(expected_price, int)):
            raise InvalidInput("total price must be an integer")

    @staticmethod
    def _write_occupancy(showtime: Showtime, seats):
        # Both fields in one UPDATE; the counter is derived, never adjusted in place
        showtime.occupied_seats = sort_seats(seats)
        showtime.available_seats = showtime.total_seats - len(showtime.occupied_seats)

    def _with_retries(self, operation: str, key, attempt_fn):
        for attempt in range(1, self.max_retries + 1):
            try:
                return attempt_fn()
            except (StaleDataError, OperationalError) as e:
                if not _is_transient(e):
                    logger.error(f"{operation} on {key} failed with a storage error: {e}")
                    raise
                if attempt == self.max_retries:
                    logger.warning(f"{operation} on {key} gave up after {attempt} attempts: {e}")
                    break
                delay = self.retry_backoff * (2 ** (attempt - 1)) * (1 + random.random())
                logger.debug(f"{operation} on {key} hit a concurrent write (attempt {attempt}), "
                             f"retrying in {delay:.3f}s")
                time.sleep(delay)
        raise Busy()
