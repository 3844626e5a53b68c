"""
Process a single service day: pull the day's raw feed data out of the feed
archive, build the trip journal, export it, publish the archive and finally
record the day in the ledger.

Publishing always happens before the ledger commit. If the process dies in
between, the day stays pending and the next run publishes the same archive
again, so the ledger never claims work that isn't durable.
"""

import datetime
from typing import Dict, FrozenSet, List, Union

from subwaydata_py.etl.session import Session
from subwaydata_py.journal.builder import build_journal
from subwaydata_py.journal.export import export_csv
from subwaydata_py.metadata.day import Day, format_day
from subwaydata_py.metadata.ledger import MetadataLedger, MetadataRecord
from subwaydata_py.metadata.pending import expected_feed_ids
from subwaydata_py.runtime_utils.etl_exception import (
    ArgumentException,
    EtlException,
    LedgerConflict,
)
from subwaydata_py.runtime_utils.process_logger import ProcessLogger
from subwaydata_py.runtime_utils.shutdown import check_for_shutdown


def commit_day(ledger: MetadataLedger, day: datetime.date, feed_ids: FrozenSet[str]) -> MetadataRecord:
    """
    add feeds to a day's ledger record. on a conflict the record is read again
    and the merge retried once before the conflict is surfaced.
    """
    message = f"{format_day(day)}: published {','.join(sorted(feed_ids))}"
    for attempt in (1, 2):
        current = ledger.read(day) or MetadataRecord(day, frozenset())
        try:
            return ledger.commit(current.merge(feed_ids), message)
        except LedgerConflict:
            if attempt == 2:
                raise
    raise LedgerConflict(f"unable to commit {format_day(day)}")


def _remove_orphan(session: Session, day: datetime.date, process_logger: ProcessLogger) -> None:
    """
    delete an archive that was published but never recorded. an archive is
    only an orphan if the ledger has no record of the day at all, anything
    else was published by an earlier, successful run.
    """
    try:
        if session.ledger.read(day) is None:
            session.artifacts.remove(day)
            process_logger.add_metadata(orphan_removed=True)
    except EtlException as exception:
        process_logger.log_warning(exception)


def run_day(session: Session, day: Union[Day, datetime.date]) -> MetadataRecord:
    """
    process one day end to end and return the ledger record written for it.

    a Day without feeds, or a bare date, is processed for every feed that
    covers it. errors raised from here carry the day, its feeds and the step
    that failed.
    """
    if not isinstance(day, Day):
        day = Day(day)
    if not day.feed_ids:
        day = day.with_feeds(expected_feed_ids(session.config.feeds, day.date))
    if not day.feed_ids:
        raise ArgumentException(f"no configured feed covers {day}").add_context(day=str(day))

    feed_ids = sorted(day.feed_ids)
    process_logger = ProcessLogger("run_day", service_date=str(day), feed_ids=",".join(feed_ids))
    process_logger.log_start()

    step = "acquire"
    try:
        check_for_shutdown(session.stop_event)
        raw_messages: Dict[str, List[bytes]] = {}
        for feed_id in feed_ids:
            check_for_shutdown(session.stop_event)
            raw_messages[feed_id] = session.feed_archive.download(feed_id, day.date)

        step = "decode"
        trips = build_journal(raw_messages, day.date, session.config.zone)

        step = "export"
        archive = export_csv(trips, session.artifacts.export_prefix(day.date))

        step = "publish"
        check_for_shutdown(session.stop_event)
        object_path = session.artifacts.publish(day.date, archive)
        process_logger.add_metadata(trip_count=len(trips), object_path=object_path, print_log=False)

        # once published the commit is always attempted
        step = "commit"
        record = commit_day(session.ledger, day.date, day.feed_ids)
    except EtlException as exception:
        exception.add_context(day=str(day), feed_ids=",".join(feed_ids), step=step)
        if step == "commit" and session.config.remove_orphaned_artifacts:
            _remove_orphan(session, day.date, process_logger)
        process_logger.log_failure(exception)
        raise

    process_logger.add_metadata(version=record.version, print_log=False)
    process_logger.log_complete()
    return record
