"""Database coordination layer: sessions, cinema lookup and ledger queries."""

from sqlalchemy import create_engine, func, text
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from contextlib import contextmanager
from typing import Dict, List, Optional
import logging
import uuid

from exceptions import BookingError, NotFound
from models import Base, Cinema, Showtime, Booking, BookingStatus, isoformat
from seat_map import sort_seats

logger = logging.getLogger(__name__)

DEMO_CINEMAS = [
    {"name": "Cineplex Downtown", "location": "123 Main St, Downtown", "rating": 4.5, "total_seats": 120},
    {"name": "Movieplex Center", "location": "456 Oak Ave, Midtown", "rating": 4.3, "total_seats": 100},
    {"name": "Grand Cinema Palace", "location": "789 Park Blvd, Uptown", "rating": 4.7, "total_seats": 150},
    {"name": "StarLight Cinema", "location": "321 Elm St, Westside", "rating": 4.6, "total_seats": 130},
    {"name": "Regal Moviehouse", "location": "654 Maple Ave, Eastside", "rating": 4.4, "total_seats": 110},
]


def parse_id(value, kind: str) -> uuid.UUID:
    """Turn a path/body id into a UUID; anything malformed cannot exist."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFound(f"{kind} not found")


class DatabaseManager:
    """Thread-safe façade over SQLAlchemy sessions and the read side of the ledger."""

    def __init__(self, database_url: str):
        engine_kwargs = {"pool_pre_ping": True, "echo": False}
        if database_url.startswith("sqlite"):
            # Worker threads share the file; wait on the write lock instead of failing fast
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        else:
            engine_kwargs.update(pool_size=20, max_overflow=40, pool_recycle=3600)

        self.engine = create_engine(database_url, **engine_kwargs)
        self.session_factory = scoped_session(sessionmaker(bind=self.engine, expire_on_commit=False))

        Base.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self):
        """Provide a transactional scope, committing on success and rolling back otherwise."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except (BookingError, IntegrityError, StaleDataError):
            # Translated by the caller
            session.rollback()
            raise
        except Exception as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            session.close()

    def dispose(self):
        self.session_factory.remove()
        self.engine.dispose()

    # Cinemas

    def seed_demo_cinemas(self) -> int:
        """Insert the demo venues when the cinema table is empty; returns how many were added."""
        with self.get_session() as session:
            if session.query(Cinema).count():
                return 0
            session.add_all(Cinema(**data) for data in DEMO_CINEMAS)
            return len(DEMO_CINEMAS)

    def add_cinema(self, name: str, location: str, total_seats: int = 100, rating: float = 0.0) -> Dict:
        with self.get_session() as session:
            cinema = Cinema(name=name, location=location, total_seats=total_seats, rating=rating)
            session.add(cinema)
            session.flush()
            return cinema.to_dict()

    def list_cinemas(self) -> List[Dict]:
        with self.get_session() as session:
            return [c.to_dict() for c in session.query(Cinema).order_by(Cinema.name).all()]

    def get_cinema(self, cinema_id) -> Dict:
        with self.get_session() as session:
            cinema = session.get(Cinema, parse_id(cinema_id, "cinema"))
            if not cinema:
                raise NotFound("cinema not found")
            return cinema.to_dict()

    # Showtime registry (read side)

    def get_occupied_seats(self, cinema_id, movie_id: str, show_date: str, show_time: str) -> List[str]:
        """Seats held by confirmed bookings; empty when the showtime was never provisioned.

        Never creates a showtime.
        """
        try:
            cinema_uuid = parse_id(cinema_id, "cinema")
        except NotFound:
            return []

        with self.get_session() as session:
            showtime = session.query(Showtime).filter_by(
                cinema_id=cinema_uuid,
                movie_id=movie_id,
                show_date=show_date,
                show_time=show_time,
            ).first()
            if not showtime:
                return []
            return sort_seats(showtime.occupied_seats or [])

    def list_showtimes(self, cinema_id, movie_id: Optional[str] = None) -> List[Dict]:
        with self.get_session() as session:
            query = session.query(Showtime).filter(Showtime.cinema_id == parse_id(cinema_id, "cinema"))
            if movie_id:
                query = query.filter(Showtime.movie_id == movie_id)
            showtimes = query.order_by(Showtime.show_date, Showtime.show_time).all()
            return [s.to_dict() for s in showtimes]

    def showtime_seat_details(self, showtime_id) -> Dict:
        """Showtime state plus which confirmed booking holds each occupied seat."""
        with self.get_session() as session:
            showtime = session.get(Showtime, parse_id(showtime_id, "showtime"))
            if not showtime:
                raise NotFound("showtime not found")

            bookings = session.query(Booking).filter(
                Booking.cinema_id == showtime.cinema_id,
                Booking.movie_id == showtime.movie_id,
                Booking.show_date == showtime.show_date,
                Booking.show_time == showtime.show_time,
                Booking.status == BookingStatus.CONFIRMED,
            ).all()

            seat_owners = {}
            for booking in bookings:
                for seat in booking.seat_ids:
                    seat_owners[seat] = {
                        "booking_id": str(booking.booking_id),
                        "user_id": booking.user_id,
                    }

            return {"showtime": showtime.to_dict(), "seat_owners": seat_owners}

    # Booking ledger (read side)

    def get_booking(self, booking_id) -> Dict:
        with self.get_session() as session:
            booking = session.get(Booking, parse_id(booking_id, "booking"))
            if not booking:
                raise NotFound("booking not found")
            return booking.to_dict()

    def list_user_bookings(self, user_id: str) -> List[Dict]:
        """All bookings of a user, most recent first, cancelled ones included."""
        with self.get_session() as session:
            bookings = session.query(Booking).filter(
                Booking.user_id == user_id
            ).order_by(Booking.booked_at.desc()).all()
            return [b.to_dict() for b in bookings]

    def cinema_booking_summary(self, cinema_id) -> List[Dict]:
        """Confirmed bookings of a cinema grouped by (movie, date, time)."""
        with self.get_session() as session:
            bookings = session.query(Booking).filter(
                Booking.cinema_id == parse_id(cinema_id, "cinema"),
                Booking.status == BookingStatus.CONFIRMED,
            ).order_by(Booking.show_date, Booking.show_time, Booking.booked_at).all()

            groups: Dict[tuple, Dict] = {}
            for booking in bookings:
                key = (booking.movie_id, booking.show_date, booking.show_time)
                group = groups.get(key)
                if group is None:
                    group = groups[key] = {
                        "movie_id": booking.movie_id,
                        "movie_title": booking.movie_title,
                        "show_date": booking.show_date,
                        "show_time": booking.show_time,
                        "total_bookings": 0,
                        "total_seats": 0,
                        "bookings": [],
                    }
                group["total_bookings"] += 1
                group["total_seats"] += len(booking.seat_ids)
                group["bookings"].append({
                    "booking_id": str(booking.booking_id),
                    "user_id": booking.user_id,
                    "seat_ids": list(booking.seat_ids),
                    "total_price": booking.total_price,
                    "booked_at": isoformat(booking.booked_at),
                })

            return list(groups.values())

    # Maintenance

    def health_check(self) -> Dict:
        """Report database connectivity and record counts; used by the /health endpoint."""
        try:
            with self.get_session() as session:
                session.execute(text("SELECT 1"))

                return {
                    "status": "healthy",
                    "database": "connected",
                    "cinemas": session.query(func.count(Cinema.cinema_id)).scalar(),
                    "showtimes": session.query(func.count(Showtime.showtime_id)).scalar(),
                    "bookings": session.query(func.count(Booking.booking_id)).scalar(),
                }
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e)
            }

    def reset_bookings(self) -> Dict[str, int]:
        """Clear every booking and showtime; cinemas are kept."""
        with self.get_session() as session:
            deleted_bookings = session.query(Booking).delete(synchronize_session=False)
            deleted_showtimes = session.query(Showtime).delete(synchronize_session=False)

            return {
                "bookings_cleared": deleted_bookings,
                "showtimes_cleared": deleted_showtimes,
            }
