import datetime
import io
import lzma
import tarfile
from typing import List
from unittest.mock import patch

import pytest

from subwaydata_py.etl.config import FeedConfig
from subwaydata_py.etl.run_day import commit_day, run_day
from subwaydata_py.metadata.day import Day
from subwaydata_py.metadata.ledger import MetadataLedger, MetadataRecord
from subwaydata_py.runtime_utils.etl_exception import (
    ArgumentException,
    BacklogCancelled,
    FeedUnavailable,
    LedgerConflict,
    LedgerUnavailable,
    PublishError,
)

from test_resources import (
    FakeArtifactStore,
    FakeFeedArchive,
    l_train_messages,
    make_config,
    make_session,
)

DAY = datetime.date(2024, 1, 15)
KEY = "s3://test-public/subwaydata/days/2024/01/subwaydatanyc_2024-01-15_csv.tar.xz"


def archive_names(published: bytes) -> List[str]:
    """entry names of a published archive"""
    with tarfile.open(fileobj=io.BytesIO(lzma.decompress(published))) as tar:
        return tar.getnames()


def l_train_archive() -> FakeFeedArchive:
    """feed archive holding a day of the L train"""
    return FakeFeedArchive({("nycsubway_L", DAY): l_train_messages(DAY)})


def test_run_day(ledger: MetadataLedger) -> None:
    """It publishes the day's archive and records the day in the ledger."""
    artifacts = FakeArtifactStore()
    session = make_session(ledger, feed_archive=l_train_archive(), artifacts=artifacts)

    record = run_day(session, DAY)

    assert record == MetadataRecord(DAY, frozenset({"nycsubway_L"}), 1)
    assert ledger.read(DAY) == record
    assert archive_names(artifacts.objects[KEY]) == [
        "subwaydatanyc_2024-01-15_trips.csv",
        "subwaydatanyc_2024-01-15_stop_times.csv",
    ]
    assert [commit.message for commit in ledger.history(DAY)] == ["2024-01-15: published nycsubway_L"]


def test_run_day_is_idempotent(ledger: MetadataLedger) -> None:
    """It publishes identical bytes on a rerun and leaves the feed set unchanged."""
    artifacts = FakeArtifactStore()
    session = make_session(ledger, feed_archive=l_train_archive(), artifacts=artifacts)

    first = run_day(session, Day(DAY, frozenset({"nycsubway_L"})))
    first_archive = artifacts.objects[KEY]
    second = run_day(session, Day(DAY, frozenset({"nycsubway_L"})))

    assert artifacts.objects[KEY] == first_archive
    assert second.feed_ids == first.feed_ids
    assert ledger.read(DAY).feed_ids == frozenset({"nycsubway_L"})  # type: ignore[union-attr]


def test_run_day_adds_feeds(ledger: MetadataLedger) -> None:
    """It merges the processed feeds into feeds already recorded for the day."""
    ledger.commit(MetadataRecord(DAY, frozenset({"nycsubway_G"})), "earlier run")
    session = make_session(ledger, feed_archive=l_train_archive())

    record = run_day(session, Day(DAY, frozenset({"nycsubway_L"})))

    assert record.feed_ids == frozenset({"nycsubway_L", "nycsubway_G"})
    assert record.version == 2


def test_day_without_feeds(ledger: MetadataLedger) -> None:
    """It refuses a day no configured feed covers."""
    session = make_session(ledger, config=make_config(FeedConfig("nycsubway_L", DAY)))

    with pytest.raises(ArgumentException, match="no configured feed covers 2024-01-14"):
        run_day(session, DAY - datetime.timedelta(days=1))


def test_missing_feed(ledger: MetadataLedger) -> None:
    """It raises FeedUnavailable with the day, feeds and step, and records nothing."""
    artifacts = FakeArtifactStore()
    session = make_session(ledger, artifacts=artifacts)

    with pytest.raises(FeedUnavailable) as raised:
        run_day(session, DAY)

    assert raised.value.context == {"day": "2024-01-15", "feed_ids": "nycsubway_L", "step": "acquire"}
    assert ledger.read(DAY) is None
    assert not artifacts.objects


def test_publish_failure(ledger: MetadataLedger) -> None:
    """It never records a day whose archive wasn't published."""
    session = make_session(ledger, feed_archive=l_train_archive(), artifacts=FakeArtifactStore(fail_publish={DAY}))

    with pytest.raises(PublishError) as raised:
        run_day(session, DAY)

    assert raised.value.context["step"] == "publish"
    assert ledger.read(DAY) is None


def test_cancelled_before_start(ledger: MetadataLedger) -> None:
    """It stops before acquiring anything once shutdown was requested."""
    feed_archive = l_train_archive()
    session = make_session(ledger, feed_archive=feed_archive)
    session.stop_event.set()

    with pytest.raises(BacklogCancelled):
        run_day(session, DAY)

    assert not feed_archive.downloads


def test_cancelled_between_feeds(ledger: MetadataLedger) -> None:
    """It stops between feeds and never publishes a partial day."""
    config = make_config(FeedConfig("feed_a", DAY), FeedConfig("feed_b", DAY))
    artifacts = FakeArtifactStore()
    session = make_session(ledger, config=config, artifacts=artifacts)

    def download(feed_id: str, day: datetime.date) -> List[bytes]:
        session.stop_event.set()
        return l_train_messages(day)

    with patch.object(session.feed_archive, "download", side_effect=download) as mock_download:
        with pytest.raises(BacklogCancelled) as raised:
            run_day(session, DAY)

    assert mock_download.call_count == 1
    assert raised.value.context["step"] == "acquire"
    assert not artifacts.objects


def test_commit_conflict_is_retried(ledger: MetadataLedger) -> None:
    """It reads the record again and retries the merge once after a conflict."""
    ledger.commit(MetadataRecord(DAY, frozenset({"nycsubway_G"})), "earlier run")
    real_commit = ledger.commit
    calls = []

    def racing_commit(record: MetadataRecord, message: str) -> MetadataRecord:
        calls.append(record)
        if len(calls) == 1:
            # another writer lands first
            current = ledger.read(DAY)
            real_commit(current.merge({"other"}), "racing writer")  # type: ignore[union-attr]
        return real_commit(record, message)

    with patch.object(ledger, "commit", side_effect=racing_commit):
        record = commit_day(ledger, DAY, frozenset({"nycsubway_L"}))

    assert len(calls) == 2
    assert record.feed_ids == frozenset({"nycsubway_L", "nycsubway_G", "other"})


def test_commit_conflict_surfaces(ledger: MetadataLedger) -> None:
    """It surfaces the second conflict in a row."""
    with patch.object(ledger, "commit", side_effect=LedgerConflict("moved")) as mock_commit:
        with pytest.raises(LedgerConflict):
            commit_day(ledger, DAY, frozenset({"nycsubway_L"}))

    assert mock_commit.call_count == 2


@pytest.mark.parametrize(
    ["remove_orphaned_artifacts", "archive_kept"],
    [(False, True), (True, False)],
    ids=["tolerate-orphan", "remove-orphan"],
)
def test_orphan_policy(ledger: MetadataLedger, remove_orphaned_artifacts: bool, archive_kept: bool) -> None:
    """It removes an archive the ledger failed to record only when configured to."""
    artifacts = FakeArtifactStore()
    session = make_session(
        ledger,
        config=make_config(remove_orphaned_artifacts=remove_orphaned_artifacts),
        feed_archive=l_train_archive(),
        artifacts=artifacts,
    )

    with patch.object(ledger, "commit", side_effect=LedgerUnavailable("database is down")):
        with pytest.raises(LedgerUnavailable) as raised:
            run_day(session, DAY)

    assert raised.value.context["step"] == "commit"
    assert (KEY in artifacts.objects) == archive_kept


def test_orphan_policy_keeps_recorded_archives(ledger: MetadataLedger) -> None:
    """It never removes the archive of a day an earlier run recorded."""
    ledger.commit(MetadataRecord(DAY, frozenset({"nycsubway_G"})), "earlier run")
    artifacts = FakeArtifactStore()
    session = make_session(
        ledger,
        config=make_config(remove_orphaned_artifacts=True),
        feed_archive=l_train_archive(),
        artifacts=artifacts,
    )

    with patch.object(ledger, "commit", side_effect=LedgerConflict("moved")):
        with pytest.raises(LedgerConflict):
            run_day(session, Day(DAY, frozenset({"nycsubway_L"})))

    assert KEY in artifacts.objects
