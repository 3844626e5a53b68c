import datetime
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Iterator

from subwaydata_py.runtime_utils.etl_exception import ArgumentException

DAY_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True, order=True)
class Day:
    """
    a service day and the feeds relevant to it. two days are equal, and sort,
    by date alone.
    """

    date: datetime.date
    feed_ids: FrozenSet[str] = field(default=frozenset(), compare=False)

    def __str__(self) -> str:
        return format_day(self.date)

    def with_feeds(self, feed_ids: Iterable[str]) -> "Day":
        """copy of this day with a different feed set"""
        return Day(self.date, frozenset(feed_ids))


def parse_day(raw_day: str) -> datetime.date:
    """
    parse a YYYY-MM-DD string. a malformed string is a user error, so it is
    raised as an ArgumentException rather than a ValueError.
    """
    try:
        return datetime.datetime.strptime(raw_day.strip(), DAY_FORMAT).date()
    except ValueError as exception:
        raise ArgumentException(f"invalid day {raw_day!r}, expected YYYY-MM-DD") from exception


def format_day(day: datetime.date) -> str:
    """render a date as YYYY-MM-DD"""
    return day.strftime(DAY_FORMAT)


def day_range(start: datetime.date, end: datetime.date) -> Iterator[datetime.date]:
    """every date from start (inclusive) to end (exclusive)"""
    current = start
    while current < end:
        yield current
        current += datetime.timedelta(days=1)
