import datetime
from typing import List

import pytest

from subwaydata_py.etl.config import FeedConfig
from subwaydata_py.metadata.day import Day
from subwaydata_py.metadata.ledger import LedgerSnapshot, MetadataRecord
from subwaydata_py.metadata.pending import compute_pending, expected_feed_ids, reference_day

from test_resources import NEW_YORK


def d(day: int, month: int = 1) -> datetime.date:
    """a date in 2024"""
    return datetime.date(2024, month, day)


FEEDS = (
    FeedConfig("nycsubway_L", d(10)),
    FeedConfig("nycsubway_G", d(12), last_day=d(13)),
)


def dates(days: List[Day]) -> List[datetime.date]:
    """just the dates of days"""
    return [day.date for day in days]


def test_empty_ledger() -> None:
    """It lists every covered day before the reference day, most recent first."""
    pending = compute_pending(LedgerSnapshot([]), FEEDS, d(15))

    assert dates(pending) == [d(14), d(13), d(12), d(11), d(10)]
    assert pending[0].feed_ids == frozenset({"nycsubway_L"})
    assert pending[1].feed_ids == frozenset({"nycsubway_L", "nycsubway_G"})
    assert pending[4].feed_ids == frozenset({"nycsubway_L"})


def test_complete_ledger() -> None:
    """It returns nothing when every day has all of its feeds."""
    snapshot = LedgerSnapshot(
        [
            MetadataRecord(d(10), frozenset({"nycsubway_L"}), 1),
            MetadataRecord(d(11), frozenset({"nycsubway_L"}), 1),
            MetadataRecord(d(12), frozenset({"nycsubway_L", "nycsubway_G"}), 3),
            MetadataRecord(d(13), frozenset({"nycsubway_L", "nycsubway_G", "retired_feed"}), 2),
            MetadataRecord(d(14), frozenset({"nycsubway_L"}), 1),
        ]
    )

    assert not compute_pending(snapshot, FEEDS, d(15))


def test_partial_day_is_pending_with_every_feed() -> None:
    """It reprocesses a day missing any feed, with the day's full feed set."""
    snapshot = LedgerSnapshot(
        [
            MetadataRecord(d(10), frozenset({"nycsubway_L"}), 1),
            MetadataRecord(d(11), frozenset({"nycsubway_L"}), 1),
            MetadataRecord(d(12), frozenset({"nycsubway_L"}), 1),
            MetadataRecord(d(13), frozenset({"nycsubway_G"}), 1),
        ]
    )

    pending = compute_pending(snapshot, FEEDS, d(14))

    assert dates(pending) == [d(13), d(12)]
    assert all(day.feed_ids == frozenset({"nycsubway_L", "nycsubway_G"}) for day in pending)


def test_reference_day_is_exclusive() -> None:
    """It never lists the reference day or anything after it."""
    assert not compute_pending(LedgerSnapshot([]), FEEDS, d(10))
    assert dates(compute_pending(LedgerSnapshot([]), FEEDS, d(11))) == [d(10)]


def test_gap_in_coverage() -> None:
    """It skips days no feed covers."""
    feeds = (
        FeedConfig("old", d(1), last_day=d(2)),
        FeedConfig("new", d(5)),
    )

    assert dates(compute_pending(LedgerSnapshot([]), feeds, d(7))) == [d(6), d(5), d(2), d(1)]
    assert not compute_pending(LedgerSnapshot([]), (), d(7))


def test_expected_feed_ids() -> None:
    """It includes the first and last day of a feed."""
    assert expected_feed_ids(FEEDS, d(9)) == frozenset()
    assert expected_feed_ids(FEEDS, d(12)) == frozenset({"nycsubway_L", "nycsubway_G"})
    assert expected_feed_ids(FEEDS, d(13)) == frozenset({"nycsubway_L", "nycsubway_G"})
    assert expected_feed_ids(FEEDS, d(14)) == frozenset({"nycsubway_L"})


@pytest.mark.parametrize(
    ["now", "expected"],
    [
        # 06:00 in new york, past the delay
        (datetime.datetime(2024, 1, 15, 11, tzinfo=datetime.timezone.utc), d(15)),
        # 04:00 in new york, the previous day is still coming in
        (datetime.datetime(2024, 1, 15, 9, tzinfo=datetime.timezone.utc), d(14)),
        # 23:00 in new york on the 14th, although it is already the 15th in utc
        (datetime.datetime(2024, 1, 15, 4, tzinfo=datetime.timezone.utc), d(14)),
        # naive times are utc
        (datetime.datetime(2024, 1, 15, 11), d(15)),
        # 05:30 edt on the spring forward day is only 04:30 of elapsed time past midnight
        (datetime.datetime(2024, 3, 10, 9, 30, tzinfo=datetime.timezone.utc), d(9, month=3)),
        # 05:30 est on the fall back day is 06:30 of elapsed time past midnight
        (datetime.datetime(2024, 11, 3, 10, 30, tzinfo=datetime.timezone.utc), d(3, month=11)),
    ],
    ids=["after-delay", "within-delay", "utc-ahead", "naive", "spring-forward", "fall-back"],
)
def test_reference_day(now: datetime.datetime, expected: datetime.date) -> None:
    """It shifts the current time in the target timezone back by the delay."""
    assert reference_day(now, NEW_YORK, datetime.timedelta(hours=5)) == expected
