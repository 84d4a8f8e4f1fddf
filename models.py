"""ORM model definitions for cinemas, showtimes and the booking ledger."""

from sqlalchemy import Column, String, Integer, Float, DateTime, Enum, JSON, Uuid, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import enum
import uuid

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def isoformat(value):
    """ISO string in UTC; SQLite hands datetimes back without tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class BookingStatus(str, enum.Enum):
    """Booking lifecycle: confirmed -> cancelled, never back."""
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'


class Cinema(Base):
    __tablename__ = 'cinemas'

    cinema_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    location = Column(String, nullable=False)
    rating = Column(Float, nullable=False, default=0.0)
    total_seats = Column(Integer, nullable=False, default=100)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "cinema_id": str(self.cinema_id),
            "name": self.name,
            "location": self.location,
            "rating": self.rating,
            "total_seats": self.total_seats,
        }


class Showtime(Base):
    """Canonical occupancy record for one (cinema, movie, date, time) screening.

    ``occupied_seats`` and ``available_seats`` are only ever written together,
    and every write bumps ``version`` so concurrent writers fail with
    ``StaleDataError`` instead of overwriting each other.
    """
    __tablename__ = 'showtimes'

    showtime_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cinema_id = Column(Uuid(as_uuid=True), nullable=False)
    movie_id = Column(String, nullable=False)
    show_date = Column(String, nullable=False)
    show_time = Column(String, nullable=False)
    price = Column(Integer, nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    occupied_seats = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        UniqueConstraint('cinema_id', 'movie_id', 'show_date', 'show_time', name='uq_showtime_slot'),
        Index('idx_showtimes_cinema', 'cinema_id'),
    )

    def to_dict(self):
        return {
            "showtime_id": str(self.showtime_id),
            "cinema_id": str(self.cinema_id),
            "movie_id": self.movie_id,
            "show_date": self.show_date,
            "show_time": self.show_time,
            "price": self.price,
            "total_seats": self.total_seats,
            "available_seats": self.available_seats,
            "booked_seats": list(self.occupied_seats or []),
        }


class Booking(Base):
    """Ledger row for one reservation.

    Cinema name, movie title, date and time are copied at booking time so the
    history stays stable if the showtime or cinema later changes. There is no
    foreign key to ``showtimes``: removing a showtime never touches bookings.
    """
    __tablename__ = 'bookings'

    booking_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False)
    cinema_id = Column(Uuid(as_uuid=True), nullable=False)
    cinema_name = Column(String, nullable=False)
    movie_id = Column(String, nullable=False)
    movie_title = Column(String, nullable=False)
    show_date = Column(String, nullable=False)
    show_time = Column(String, nullable=False)
    seat_ids = Column(JSON, nullable=False)
    total_price = Column(Integer, nullable=False)
    status = Column(Enum(BookingStatus, name='booking_status_enum'),
                    default=BookingStatus.CONFIRMED, nullable=False)
    booked_at = Column(DateTime(timezone=True), default=utcnow)
    cancelled_at = Column(DateTime(timezone=True))
    version = Column(Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        Index('idx_bookings_user', 'user_id'),
        Index('idx_bookings_cinema', 'cinema_id', 'status'),
    )

    def to_dict(self):
        return {
            "booking_id": str(self.booking_id),
            "user_id": self.user_id,
            "cinema_id": str(self.cinema_id),
            "cinema_name": self.cinema_name,
            "movie_id": self.movie_id,
            "movie_title": self.movie_title,
            "show_date": self.show_date,
            "show_time": self.show_time,
            "seat_ids": list(self.seat_ids),
            "total_price": self.total_price,
            "status": self.status.value,
            "booked_at": isoformat(self.booked_at),
            "cancelled_at": isoformat(self.cancelled_at),
        }
