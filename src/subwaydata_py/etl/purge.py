import datetime
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from subwaydata_py.etl.session import Session
from subwaydata_py.metadata.day import format_day
from subwaydata_py.metadata.ledger import MetadataLedger, MetadataRecord
from subwaydata_py.runtime_utils.etl_exception import EtlException, LedgerConflict, PurgeError
from subwaydata_py.runtime_utils.process_logger import ProcessLogger


@dataclass
class PurgeReport:
    """outcome of a purge, days ordered most recent first"""

    dry_run: bool
    purged: List[datetime.date] = field(default_factory=list)
    would_purge: List[MetadataRecord] = field(default_factory=list)
    failed: List[Tuple[datetime.date, BaseException]] = field(default_factory=list)

    def lines(self) -> List[str]:
        """per day breakdown for printing"""
        lines = [
            f"{format_day(record.day)}: would purge ({','.join(sorted(record.feed_ids))})"
            for record in self.would_purge
        ]
        lines += [f"{format_day(day)}: purged" for day in self.purged]
        lines += [f"{format_day(day)}: failed: {type(error).__name__}: {error}" for day, error in self.failed]
        return lines


def _remove_record(ledger: MetadataLedger, record: MetadataRecord) -> None:
    """remove a day's record, reading it again and retrying once on a conflict"""
    message = f"{format_day(record.day)}: purged"
    try:
        ledger.remove(record, message)
    except LedgerConflict:
        current = ledger.read(record.day)
        if current is None:
            return
        ledger.remove(current, message)


def purge(session: Session, days: Iterable[datetime.date], confirm: bool = False) -> PurgeReport:
    """
    undo the processing of days: delete their published archives, then their
    ledger records, after which the days are pending again.

    without confirm nothing is changed and the report lists what would be
    purged. each day is purged on its own, a failing day never stops the
    others.
    """
    process_logger = ProcessLogger("purge", confirm=confirm)
    process_logger.log_start()

    report = PurgeReport(dry_run=not confirm)
    for day in sorted(set(days), reverse=True):
        try:
            record = session.ledger.read(day)
            if record is None:
                raise PurgeError(f"{format_day(day)} is not in the ledger")

            if not confirm:
                report.would_purge.append(record)
                continue

            # a failed delete leaves the record, so the day still looks done
            # and the purge can simply be repeated
            session.artifacts.remove(day)
            try:
                _remove_record(session.ledger, record)
            except EtlException as exception:
                raise PurgeError(
                    f"archive for {format_day(day)} was deleted but its ledger record was left: {exception}"
                ) from exception
            report.purged.append(day)
        except EtlException as exception:
            exception.add_context(day=format_day(day))
            report.failed.append((day, exception))
            process_logger.log_warning(exception)

    process_logger.add_metadata(
        purged_count=len(report.purged),
        would_purge_count=len(report.would_purge),
        failed_count=len(report.failed),
        print_log=False,
    )
    process_logger.log_complete()
    return report
