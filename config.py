"""Runtime configuration sourced from the environment (and an optional .env file)."""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Settings consumed by the app factory and the reservation engine."""

    def __init__(self, **overrides):
        self.database_url = os.getenv('DATABASE_URL', 'sqlite:///cinema_booking.db')
        self.port = int(os.getenv('PORT', 5000))
        self.log_level = os.getenv('LOG_LEVEL', 'INFO')
        self.default_ticket_price = int(os.getenv('DEFAULT_TICKET_PRICE', 200))
        self.seats_per_row = int(os.getenv('SEATS_PER_ROW', 10))
        self.reserve_max_retries = int(os.getenv('RESERVE_MAX_RETRIES', 5))
        self.reserve_retry_backoff = float(os.getenv('RESERVE_RETRY_BACKOFF', 0.02))
        self.seed_demo_data = _env_bool('SEED_DEMO_DATA', True)
        self.cors_origins = os.getenv('CORS_ORIGINS', '*')

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"unknown config option: {key}")
            setattr(self, key, value)
