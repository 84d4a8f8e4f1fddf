"""Shared fixtures: a throwaway SQLite file per test, the engine, and the Flask client."""

import pytest

from app import create_app
from config import Config
from database_manager import DatabaseManager
from models import Showtime
from reservation_engine import SeatReservationEngine, ShowtimeProvisioner

MOVIE_ID = "tt0111161"
MOVIE_TITLE = "The Shawshank Redemption"
SHOW_DATE = "2024-01-01"
SHOW_TIME = "18:00"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cinema_booking_test.db'}"


@pytest.fixture
def db(database_url):
    manager = DatabaseManager(database_url)
    yield manager
    manager.dispose()


@pytest.fixture
def cinema(db):
    """A 100-seat cinema (rows A-J, ten seats each)."""
    return db.add_cinema("Test Cinema", "1 Test Street", total_seats=100, rating=4.2)


@pytest.fixture
def provisioner(db):
    return ShowtimeProvisioner(db, default_price=200)


@pytest.fixture
def engine(db, provisioner):
    # Generous retry budget: SQLite serializes every writer on the file lock
    return SeatReservationEngine(db, provisioner, max_retries=50, retry_backoff=0.005)


@pytest.fixture
def showtime(provisioner, cinema):
    return provisioner.resolve_showtime(cinema["cinema_id"], MOVIE_ID, SHOW_DATE, SHOW_TIME)


@pytest.fixture
def count_showtimes(db):
    def _count(**filters):
        with db.get_session() as session:
            return session.query(Showtime).filter_by(**filters).count()
    return _count


@pytest.fixture
def load_showtime(db):
    def _load(showtime_id):
        with db.get_session() as session:
            return session.get(Showtime, showtime_id)
    return _load


@pytest.fixture
def app(database_url):
    config = Config(
        database_url=database_url,
        seed_demo_data=False,
        reserve_max_retries=50,
        reserve_retry_backoff=0.005,
    )
    app = create_app(config)
    app.config.update(TESTING=True)
    yield app
    app.extensions['database_manager'].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_cinema(app):
    return app.extensions['database_manager'].add_cinema("Movieplex Center", "456 Oak Ave", total_seats=100)
