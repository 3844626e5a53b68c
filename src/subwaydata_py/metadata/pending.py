import datetime
from typing import FrozenSet, List, Sequence
from zoneinfo import ZoneInfo

from subwaydata_py.etl.config import FeedConfig
from subwaydata_py.metadata.day import Day, day_range
from subwaydata_py.metadata.ledger import LedgerSnapshot

# feeds for a day keep arriving for a while after local midnight
DEFAULT_PUBLICATION_DELAY = datetime.timedelta(hours=5)


def reference_day(
    now: datetime.datetime,
    timezone: ZoneInfo,
    delay: datetime.timedelta = DEFAULT_PUBLICATION_DELAY,
) -> datetime.date:
    """
    the first day that is not yet ready to be processed: now, in the target
    timezone, shifted back by the publication delay
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    # the delay is elapsed time, not wall clock time
    return (now.astimezone(datetime.timezone.utc) - delay).astimezone(timezone).date()


def expected_feed_ids(feeds: Sequence[FeedConfig], day: datetime.date) -> FrozenSet[str]:
    """ids of every feed that has data for a day"""
    return frozenset(feed.feed_id for feed in feeds if feed.covers(day))


def compute_pending(
    snapshot: LedgerSnapshot,
    feeds: Sequence[FeedConfig],
    before: datetime.date,
) -> List[Day]:
    """
    every day before the reference day whose expected feeds are not all
    recorded in the ledger, most recent first.

    a pending day carries its full expected feed set: the whole day is
    reprocessed even if only one feed is missing, and the ledger update that
    follows is additive.
    """
    if not feeds:
        return []

    first_day = min(feed.first_day for feed in feeds)

    pending = []
    for day in day_range(first_day, before):
        expected = expected_feed_ids(feeds, day)
        if not expected:
            continue
        if expected <= snapshot.feed_ids(day):
            continue
        pending.append(Day(day, expected))

    pending.reverse()
    return pending
