"""Seat-map helpers: a cinema's seats are lettered rows of fixed width."""

import re
import string
from typing import Iterable, List

from exceptions import InvalidInput

# One letter per row, so a layout holds at most 26 rows (see max_capacity)
SEAT_LABEL_RE = re.compile(r'^([A-Z])([1-9][0-9]*)$')
ROW_LETTERS = string.ascii_uppercase


def max_capacity(seats_per_row: int = 10) -> int:
    """Largest cinema the lettered layout can label."""
    return len(ROW_LETTERS) * seats_per_row


def layout_labels(total_seats: int, seats_per_row: int = 10) -> List[str]:
    """Every valid label for a cinema, in row-major order (A1..A10, B1..).

    Capacities past :func:`max_capacity` are rejected when a showtime is
    provisioned, so the labels stop at row Z.
    """
    labels = []
    for index in range(min(total_seats, max_capacity(seats_per_row))):
        row, number = divmod(index, seats_per_row)
        labels.append(f"{ROW_LETTERS[row]}{number + 1}")
    return labels


def seat_sort_key(label: str):
    match = SEAT_LABEL_RE.match(label)
    if not match:
        return (label, 0)
    return (match.group(1), int(match.group(2)))


def sort_seats(seat_ids: Iterable[str]) -> List[str]:
    return sorted(seat_ids, key=seat_sort_key)


def is_valid_label(label: str, total_seats: int, seats_per_row: int = 10) -> bool:
    match = SEAT_LABEL_RE.match(label)
    if not match:
        return False
    row = ord(match.group(1)) - ord('A')
    number = int(match.group(2))
    if number > seats_per_row:
        return False
    return row * seats_per_row + number <= total_seats


def normalize_seats(seat_ids: Iterable) -> List[str]:
    """Shape-check a requested seat list and return it trimmed and upper-cased.

    Only syntax is checked here; range checks need the cinema's capacity and
    happen in :func:`validate_against_layout`.
    """
    if not isinstance(seat_ids, list):
        raise InvalidInput("seats must be provided as a non-empty JSON array")
    if not seat_ids:
        raise InvalidInput("seats must contain at least one seat")

    normalized = []
    for index, seat in enumerate(seat_ids):
        if not isinstance(seat, str):
            raise InvalidInput("each seat must be a string", details={"index": index})
        label = seat.strip().upper()
        if not SEAT_LABEL_RE.match(label):
            raise InvalidInput("malformed seat label", details={"index": index, "seat": seat})
        normalized.append(label)

    if len(set(normalized)) != len(normalized):
        raise InvalidInput("seats must not contain duplicates")

    return normalized


def validate_against_layout(seat_ids: Iterable[str], total_seats: int, seats_per_row: int = 10):
    invalid = sort_seats(s for s in seat_ids if not is_valid_label(s, total_seats, seats_per_row))
    if invalid:
        raise InvalidInput(
            "seat label outside the cinema seat map",
            details={"invalid_seats": invalid, "total_seats": total_seats},
        )
