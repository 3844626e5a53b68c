"""
The metadata ledger records, for every processed service day, the set of feeds
whose data has been durably published. It is the only source of truth for what
has been done.

Every record carries a version token. Writers hand back the version they read
and the write only lands if nobody else has advanced that day in the meantime,
otherwise a LedgerConflict is raised and nothing is written. Each change is
recorded in the commit log in the same transaction, together with a message
describing it.
"""

import datetime
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session

from subwaydata_py.metadata.day import format_day
from subwaydata_py.postgres.ledger_schema import LedgerCommitLog, LedgerDay
from subwaydata_py.postgres.postgres_utils import DatabaseManager
from subwaydata_py.runtime_utils.etl_exception import LedgerConflict, LedgerUnavailable
from subwaydata_py.runtime_utils.process_logger import ProcessLogger

FEED_SEPARATOR = ","


def encode_feed_ids(feed_ids: Iterable[str]) -> str:
    """feed ids as they are stored in the database"""
    return FEED_SEPARATOR.join(sorted(set(feed_ids)))


def decode_feed_ids(raw: str) -> FrozenSet[str]:
    """inverse of encode_feed_ids"""
    return frozenset(feed_id for feed_id in raw.split(FEED_SEPARATOR) if feed_id)


@dataclass(frozen=True)
class MetadataRecord:
    """
    the feeds published for a day. version 0 means the day is not yet in the
    ledger.
    """

    day: datetime.date
    feed_ids: FrozenSet[str]
    version: int = 0

    def merge(self, feed_ids: Iterable[str]) -> "MetadataRecord":
        """additive update, keeping the version that was read"""
        return MetadataRecord(self.day, self.feed_ids | frozenset(feed_ids), self.version)


@dataclass(frozen=True)
class LedgerCommit:
    """one entry of the ledger commit log"""

    day: datetime.date
    feed_ids: FrozenSet[str]
    version: int
    message: str
    created_on: Optional[datetime.datetime]


class LedgerSnapshot:
    """ledger contents at the time of a read, ordered by day"""

    def __init__(self, records: Iterable[MetadataRecord]) -> None:
        self.records: List[MetadataRecord] = sorted(records, key=lambda record: record.day)
        self._by_day: Dict[datetime.date, MetadataRecord] = {record.day: record for record in self.records}

    def get(self, day: datetime.date) -> Optional[MetadataRecord]:
        """record for a day, if there is one"""
        return self._by_day.get(day)

    def feed_ids(self, day: datetime.date) -> FrozenSet[str]:
        """feeds published for a day, empty if the day is absent"""
        record = self.get(day)
        if record is None:
            return frozenset()
        return record.feed_ids

    def __contains__(self, day: object) -> bool:
        return day in self._by_day

    def __iter__(self) -> Iterator[MetadataRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


class MetadataLedger:
    """
    read / commit access to the ledger tables
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.db_manager = db_manager

    def read_all(self) -> LedgerSnapshot:
        """read every record. raises LedgerUnavailable if the store can't be read."""
        process_logger = ProcessLogger("ledger_read_all")
        process_logger.log_start()
        try:
            with self.db_manager.session.begin() as session:
                rows = session.execute(
                    sa.select(LedgerDay.service_date, LedgerDay.feed_ids, LedgerDay.version).order_by(
                        LedgerDay.service_date
                    )
                ).all()
        except sa.exc.SQLAlchemyError as exception:
            error = LedgerUnavailable(f"unable to read the ledger: {exception}")
            process_logger.log_failure(error)
            raise error from exception

        snapshot = LedgerSnapshot(
            MetadataRecord(row.service_date, decode_feed_ids(row.feed_ids), row.version) for row in rows
        )
        process_logger.add_metadata(record_count=len(snapshot), print_log=False)
        process_logger.log_complete()
        return snapshot

    def read(self, day: datetime.date) -> Optional[MetadataRecord]:
        """fresh read of a single day"""
        try:
            with self.db_manager.session.begin() as session:
                row = session.execute(
                    sa.select(LedgerDay.feed_ids, LedgerDay.version).where(LedgerDay.service_date == day)
                ).one_or_none()
        except sa.exc.SQLAlchemyError as exception:
            raise LedgerUnavailable(f"unable to read {format_day(day)} from the ledger: {exception}") from exception

        if row is None:
            return None
        return MetadataRecord(day, decode_feed_ids(row.feed_ids), row.version)

    def commit(self, record: MetadataRecord, message: str) -> MetadataRecord:
        """
        write a record. record.version must be the version that was read, 0 for
        a day that was absent. returns the record with its new version.
        """
        process_logger = ProcessLogger(
            "ledger_commit",
            service_date=record.day,
            feed_ids=encode_feed_ids(record.feed_ids),
            expected_version=record.version,
        )
        process_logger.log_start()

        feed_ids = encode_feed_ids(record.feed_ids)
        try:
            with self.db_manager.session.begin() as session:
                if record.version == 0:
                    new_version = self._next_version(session, record.day)
                    session.execute(
                        sa.insert(LedgerDay).values(
                            service_date=record.day,
                            feed_ids=feed_ids,
                            version=new_version,
                        )
                    )
                else:
                    new_version = record.version + 1
                    result = session.execute(
                        sa.update(LedgerDay)
                        .where(LedgerDay.service_date == record.day)
                        .where(LedgerDay.version == record.version)
                        .values(feed_ids=feed_ids, version=new_version)
                    )
                    if result.rowcount != 1:
                        raise LedgerConflict(
                            f"ledger record for {format_day(record.day)} moved past version {record.version}"
                        )
                self._log_commit(session, record.day, feed_ids, new_version, message)
        except LedgerConflict as exception:
            process_logger.log_failure(exception)
            raise
        except sa.exc.IntegrityError as exception:
            error = LedgerConflict(f"ledger record for {format_day(record.day)} was created by another writer")
            process_logger.log_failure(error)
            raise error from exception
        except sa.exc.SQLAlchemyError as exception:
            error = LedgerUnavailable(f"unable to commit {format_day(record.day)} to the ledger: {exception}")
            process_logger.log_failure(error)
            raise error from exception

        process_logger.add_metadata(new_version=new_version, print_log=False)
        process_logger.log_complete()
        return MetadataRecord(record.day, record.feed_ids, new_version)

    def remove(self, record: MetadataRecord, message: str) -> None:
        """delete a day's record, if it is still at the version that was read"""
        process_logger = ProcessLogger("ledger_remove", service_date=record.day, expected_version=record.version)
        process_logger.log_start()
        try:
            with self.db_manager.session.begin() as session:
                result = session.execute(
                    sa.delete(LedgerDay)
                    .where(LedgerDay.service_date == record.day)
                    .where(LedgerDay.version == record.version)
                )
                if result.rowcount != 1:
                    raise LedgerConflict(
                        f"ledger record for {format_day(record.day)} moved past version {record.version}"
                    )
                self._log_commit(session, record.day, "", record.version + 1, message)
        except LedgerConflict as exception:
            process_logger.log_failure(exception)
            raise
        except sa.exc.SQLAlchemyError as exception:
            error = LedgerUnavailable(f"unable to remove {format_day(record.day)} from the ledger: {exception}")
            process_logger.log_failure(error)
            raise error from exception

        process_logger.log_complete()

    def history(self, day: Optional[datetime.date] = None) -> List[LedgerCommit]:
        """commit log, oldest first, optionally for a single day"""
        query = sa.select(LedgerCommitLog).order_by(LedgerCommitLog.pk_id)
        if day is not None:
            query = query.where(LedgerCommitLog.service_date == day)

        try:
            with self.db_manager.session.begin() as session:
                return [
                    LedgerCommit(
                        day=entry.service_date,
                        feed_ids=decode_feed_ids(entry.feed_ids),
                        version=entry.version,
                        message=entry.message,
                        created_on=entry.created_on,
                    )
                    for entry in session.scalars(query)
                ]
        except sa.exc.SQLAlchemyError as exception:
            raise LedgerUnavailable(f"unable to read the ledger history: {exception}") from exception

    @staticmethod
    def _next_version(session: Session, day: datetime.date) -> int:
        """
        versions keep counting across purges so that a record read before a
        purge can never match a record written after it
        """
        last_version = session.execute(
            sa.select(sa.func.max(LedgerCommitLog.version)).where(LedgerCommitLog.service_date == day)
        ).scalar_one_or_none()
        return (last_version or 0) + 1

    @staticmethod
    def _log_commit(session: Session, day: datetime.date, feed_ids: str, version: int, message: str) -> None:
        session.execute(
            sa.insert(LedgerCommitLog).values(
                service_date=day,
                feed_ids=feed_ids,
                version=version,
                message=message,
            )
        )
