import datetime

import pytest

from subwaydata_py.metadata.day import Day, day_range, format_day, parse_day
from subwaydata_py.runtime_utils.etl_exception import ArgumentException


def test_parse_day() -> None:
    """It parses YYYY-MM-DD and formats it back."""
    day = parse_day("2024-01-15")

    assert day == datetime.date(2024, 1, 15)
    assert format_day(day) == "2024-01-15"


@pytest.mark.parametrize(
    "raw_day",
    ["2024-13-01", "2024-02-30", "15-01-2024", "yesterday", ""],
    ids=["bad-month", "bad-day", "wrong-order", "word", "empty"],
)
def test_parse_bad_day(raw_day: str) -> None:
    """It raises ArgumentException for anything that isn't a real YYYY-MM-DD date."""
    with pytest.raises(ArgumentException, match="expected YYYY-MM-DD"):
        parse_day(raw_day)


def test_day_identity() -> None:
    """It compares, hashes and sorts days by date alone."""
    plain = Day(datetime.date(2024, 1, 15))
    with_feeds = Day(datetime.date(2024, 1, 15), frozenset({"nycsubway_L"}))
    later = Day(datetime.date(2024, 1, 16))

    assert plain == with_feeds
    assert len({plain, with_feeds}) == 1
    assert sorted([later, plain]) == [plain, later]
    assert str(with_feeds) == "2024-01-15"
    assert plain.with_feeds(["a", "b"]).feed_ids == frozenset({"a", "b"})


def test_day_range() -> None:
    """It yields every date from start up to but not including end."""
    days = list(day_range(datetime.date(2024, 2, 27), datetime.date(2024, 3, 2)))

    assert days == [
        datetime.date(2024, 2, 27),
        datetime.date(2024, 2, 28),
        datetime.date(2024, 2, 29),
        datetime.date(2024, 3, 1),
    ]
    assert not list(day_range(datetime.date(2024, 3, 2), datetime.date(2024, 3, 2)))
