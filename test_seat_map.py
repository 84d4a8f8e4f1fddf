import pytest

from exceptions import InvalidInput
from seat_map import is_valid_label, layout_labels, max_capacity, normalize_seats, sort_seats, validate_against_layout


def test_layout_labels_row_major():
    labels = layout_labels(25)

    assert labels[:3] == ["A1", "A2", "A3"]
    assert labels[9:11] == ["A10", "B1"]
    assert labels[-1] == "C5"
    assert len(labels) == 25


@pytest.mark.parametrize("label, valid", [
    ("A1", True),
    ("J10", True),
    ("A11", False),
    ("K1", False),
    ("A0", False),
    ("a1", False),
    ("AA1", False),
    ("", False),
])
def test_is_valid_label_for_hundred_seats(label, valid):
    assert is_valid_label(label, 100) is valid


def test_is_valid_label_respects_row_width():
    assert is_valid_label("A12", 24, seats_per_row=12)
    assert not is_valid_label("B1", 12, seats_per_row=12)


def test_normalize_seats_trims_and_uppercases():
    assert normalize_seats([" a1", "B10 "]) == ["A1", "B10"]


@pytest.mark.parametrize("seats", [None, "A1", [], [""], ["A1", 5], ["A1", "a1"], ["seat-1"]])
def test_normalize_seats_rejects_bad_shapes(seats):
    with pytest.raises(InvalidInput):
        normalize_seats(seats)


def test_validate_against_layout_lists_out_of_range_seats():
    with pytest.raises(InvalidInput) as excinfo:
        validate_against_layout(["A1", "K2", "K1"], 100)

    assert excinfo.value.payload["details"]["invalid_seats"] == ["K1", "K2"]


def test_sort_seats_is_natural():
    assert sort_seats(["A10", "B1", "A2"]) == ["A2", "A10", "B1"]


def test_layout_stops_at_row_z():
    assert max_capacity() == 260
    assert max_capacity(seats_per_row=12) == 312

    labels = layout_labels(300)
    assert len(labels) == 260
    assert labels[-1] == "Z10"
    assert not is_valid_label("Z11", 300)
