"""HTTP entrypoint for the cinema booking backend."""

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from functools import wraps
import logging
from typing import Any, Dict, Optional

from config import Config
from database_manager import DatabaseManager
from exceptions import BookingError, Busy, Forbidden, InvalidInput
from reservation_engine import SeatReservationEngine, ShowtimeProvisioner

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)

BOOKING_FIELDS = ('cinemaId', 'imdbID', 'showDate', 'showtime', 'seats', 'totalPrice', 'movieTitle')


def db() -> DatabaseManager:
    return current_app.extensions['database_manager']


def reservation_engine() -> SeatReservationEngine:
    return current_app.extensions['reservation_engine']


def require_json_object() -> Dict[str, Any]:
    """Ensure the request body is a JSON object before proceeding."""
    if not request.is_json:
        raise InvalidInput("request body must be a JSON object")

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInput("request body must be a JSON object")

    return data


def caller_role() -> Optional[str]:
    """Role asserted by the upstream auth layer."""
    return request.headers.get('X-User-Role')


def admin_required(f):
    """Decorator to restrict an endpoint to callers with the admin role"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if caller_role() != 'admin':
            raise Forbidden("admin role required")
        return f(*args, **kwargs)
    return decorated_function


# API Endpoints

@api.route("/")
def home_page():
    return jsonify({"message": "Cinema Booking API"})


@api.route('/health', methods=['GET'])
def health_check():
    """Expose database connectivity and record counts."""
    status = db().health_check()
    return jsonify(status), 200 if status["status"] == "healthy" else 503


@api.route('/api/cinemas', methods=['GET'])
def list_cinemas():
    return jsonify(db().list_cinemas())


@api.route('/api/cinemas/<cinema_id>', methods=['GET'])
def get_cinema(cinema_id):
    return jsonify(db().get_cinema(cinema_id))


@api.route('/api/bookings', methods=['POST'])
def create_booking():
    """Reserve seats for a showtime, provisioning the showtime on first use."""
    data = require_json_object()

    body_user = data.get('userId')
    header_user = request.headers.get('X-User-Id')
    if body_user and header_user and body_user != header_user:
        raise Forbidden("userId does not match the authenticated caller")
    user_id = body_user or header_user

    missing = [field for field in BOOKING_FIELDS if data.get(field) in (None, '')]
    if not user_id:
        missing.append('userId')
    if missing:
        raise InvalidInput("missing required fields", details={"missing": missing})

    booking = reservation_engine().create_booking(
        cinema_id=data['cinemaId'],
        movie_id=data['imdbID'],
        show_date=data['showDate'],
        show_time=data['showtime'],
        seats=data['seats'],
        user_id=user_id,
        movie_title=data['movieTitle'],
        total_price=data['totalPrice'],
    )
    return jsonify(booking), 201


@api.route('/api/bookings/user/<user_id>', methods=['GET'])
def list_user_bookings(user_id):
    """Booking history for a user, most recent first."""
    return jsonify(db().list_user_bookings(user_id))


@api.route('/api/bookings/cinema/<cinema_id>', methods=['GET'])
@admin_required
def cinema_bookings(cinema_id):
    """Confirmed bookings for a cinema grouped by movie, date and time."""
    return jsonify(db().cinema_booking_summary(cinema_id))


@api.route('/api/bookings/<booking_id>', methods=['GET'])
def get_booking(booking_id):
    return jsonify(db().get_booking(booking_id))


@api.route('/api/bookings/<booking_id>/cancel', methods=['PATCH'])
def cancel_booking(booking_id):
    """Cancel a booking and release its seats."""
    return jsonify(reservation_engine().cancel(booking_id))


@api.route('/api/showtimes/booked-seats', methods=['GET'])
def booked_seats():
    """Occupied seats for a (cinema, movie, date, time) slot; never provisions."""
    cinema_id = request.args.get('cinemaId')
    movie_id = request.args.get('imdbID') or request.args.get('movieId')
    show_date = request.args.get('date')
    show_time = request.args.get('time')

    if not all((cinema_id, movie_id, show_date, show_time)):
        raise InvalidInput("cinemaId, imdbID, date and time are required")

    seats = db().get_occupied_seats(cinema_id, movie_id, show_date, show_time)
    return jsonify({"bookedSeats": seats})


@api.route('/api/showtimes/cinema/<cinema_id>', methods=['GET'])
def cinema_showtimes(cinema_id):
    movie_id = request.args.get('imdbID') or request.args.get('movieId')
    return jsonify(db().list_showtimes(cinema_id, movie_id))


@api.route('/api/showtimes/<showtime_id>/seats', methods=['GET'])
@admin_required
def showtime_seat_details(showtime_id):
    return jsonify(db().showtime_seat_details(showtime_id))


@api.route('/reset', methods=['POST'])
@admin_required
def reset_all_bookings():
    """Administrative endpoint to clear every booking and showtime."""
    if request.data:
        data = require_json_object()
        if data:
            raise InvalidInput("reset payload must be empty")

    result = db().reset_bookings()
    logger.info(
        "System reset: %s bookings cleared, %s showtimes cleared",
        result.get('bookings_cleared', 0),
        result.get('showtimes_cleared', 0),
    )
    return jsonify({"message": "all bookings reset", **result}), 200


def register_error_handlers(app: Flask):
    @app.errorhandler(BookingError)
    def handle_booking_error(error: BookingError):
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        if isinstance(error, Busy):
            response.headers['Retry-After'] = str(error.retry_after)
        return response

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return jsonify({"error": "internal server error"}), 500


def create_app(config: Optional[Config] = None) -> Flask:
    """Build the Flask app with its database layer and reservation engine."""
    config = config or Config()
    logging.basicConfig(level=config.log_level)

    app = Flask(__name__)
    CORS(app, origins=config.cors_origins)

    database = DatabaseManager(config.database_url)
    provisioner = ShowtimeProvisioner(
        database,
        default_price=config.default_ticket_price,
        seats_per_row=config.seats_per_row,
    )
    engine = SeatReservationEngine(
        database,
        provisioner,
        seats_per_row=config.seats_per_row,
        max_retries=config.reserve_max_retries,
        retry_backoff=config.reserve_retry_backoff,
    )
    app.extensions['database_manager'] = database
    app.extensions['reservation_engine'] = engine

    if config.seed_demo_data:
        seeded = database.seed_demo_cinemas()
        if seeded:
            logger.info(f"Seeded {seeded} demo cinemas")
        else:
            logger.info("Cinemas already present, skipping demo seed")

    app.register_blueprint(api)
    register_error_handlers(app)
    return app


if __name__ == '__main__':
    config = Config()
    app = create_app(config)

    logger.info("""
    ================================
    CINEMA BOOKING API
    ================================
    Database: %s
    Concurrency: row lock + versioned showtime updates
    ================================
    """, config.database_url.split('@')[-1])

    app.run(host="0.0.0.0", port=config.port, debug=False, threaded=True)
