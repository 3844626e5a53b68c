import datetime
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional, Tuple

from subwaydata_py.etl.run_day import run_day
from subwaydata_py.etl.session import Session
from subwaydata_py.metadata.day import Day
from subwaydata_py.metadata.pending import compute_pending, reference_day
from subwaydata_py.runtime_utils.etl_exception import ArgumentException, BacklogCancelled
from subwaydata_py.runtime_utils.process_logger import ProcessLogger

RunDayFn = Callable[[Day], object]


def utc_now() -> datetime.datetime:
    """current time, timezone aware"""
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class BacklogReport:
    """
    outcome of a backlog run. every list follows the order the days were
    selected in, whatever order they finished in.
    """

    selected: List[Day] = field(default_factory=list)
    succeeded: List[Day] = field(default_factory=list)
    failed: List[Tuple[Day, BaseException]] = field(default_factory=list)
    skipped: List[Day] = field(default_factory=list)
    dry_run: bool = False

    @property
    def failed_days(self) -> List[Day]:
        """days that raised, without their errors"""
        return [day for day, _ in self.failed]

    def lines(self) -> List[str]:
        """per day breakdown for printing"""
        if self.dry_run:
            return [f"{day}: would run ({','.join(sorted(day.feed_ids))})" for day in self.selected]

        outcomes: Dict[Day, str] = {}
        for day in self.succeeded:
            outcomes[day] = "succeeded"
        for day, error in self.failed:
            outcomes[day] = f"failed: {type(error).__name__}: {error}"
        for day in self.skipped:
            outcomes[day] = "skipped"
        return [f"{day}: {outcomes[day]}" for day in self.selected if day in outcomes]


def _should_stop(
    stop_event: Optional[threading.Event],
    deadline: Optional[datetime.datetime],
    now_fn: Callable[[], datetime.datetime],
) -> bool:
    if stop_event is not None and stop_event.is_set():
        return True
    return deadline is not None and now_fn() >= deadline


def run_backlog(
    pending_days: Iterable[Day],
    run_day_fn: RunDayFn,
    concurrency: int = 1,
    limit: Optional[int] = None,
    dry_run: bool = False,
    stop_event: Optional[threading.Event] = None,
    deadline: Optional[datetime.datetime] = None,
    now_fn: Callable[[], datetime.datetime] = utc_now,
) -> BacklogReport:
    """
    run a day function over pending days on a fixed size thread pool.

    :param pending_days: days to run, in the order they should start
    :param run_day_fn: processes one day, raising on failure
    :param concurrency: number of days in flight at once, at least 1
    :param limit: only run this many of the first pending days
    :param dry_run: report the selection without running anything
    :param stop_event: once set, no further day is started
    :param deadline: no day is started at or after this time

    a failing day never stops the others, its error is collected in the
    report. days not started because of a stop or the deadline, and days that
    stopped themselves on shutdown, are reported as skipped.
    """
    if concurrency < 1:
        raise ArgumentException(f"concurrency must be at least 1, got {concurrency}")
    if limit is not None and limit < 0:
        raise ArgumentException(f"limit must not be negative, got {limit}")

    selected = list(pending_days)
    if limit is not None:
        selected = selected[:limit]

    process_logger = ProcessLogger(
        "run_backlog",
        pending_count=len(selected),
        concurrency=concurrency,
        dry_run=dry_run,
    )
    process_logger.log_start()

    if dry_run:
        process_logger.log_complete()
        return BacklogReport(selected=selected, dry_run=True)

    succeeded: List[Day] = []
    failed: List[Tuple[Day, BaseException]] = []
    skipped: List[Day] = []

    queue: Deque[Day] = deque(selected)
    in_flight: Dict[Future, Day] = {}
    with ThreadPoolExecutor(max_workers=concurrency) as executor:
        while queue or in_flight:
            while queue and len(in_flight) < concurrency and not _should_stop(stop_event, deadline, now_fn):
                day = queue.popleft()
                in_flight[executor.submit(run_day_fn, day)] = day

            if not in_flight:
                break

            done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
            for future in done:
                day = in_flight.pop(future)
                exception = future.exception()
                if exception is None:
                    succeeded.append(day)
                elif isinstance(exception, BacklogCancelled):
                    skipped.append(day)
                else:
                    failed.append((day, exception))

    skipped.extend(queue)

    position = {day: index for index, day in enumerate(selected)}
    report = BacklogReport(
        selected=selected,
        succeeded=sorted(succeeded, key=position.__getitem__),
        failed=sorted(failed, key=lambda outcome: position[outcome[0]]),
        skipped=sorted(skipped, key=position.__getitem__),
    )
    process_logger.add_metadata(
        succeeded_count=len(report.succeeded),
        failed_count=len(report.failed),
        skipped_count=len(report.skipped),
        print_log=False,
    )
    process_logger.log_complete()
    return report


def backlog(
    session: Session,
    limit: Optional[int] = None,
    concurrency: int = 1,
    dry_run: bool = False,
    deadline: Optional[datetime.datetime] = None,
    now: Optional[datetime.datetime] = None,
) -> BacklogReport:
    """
    run every day the ledger is missing work for. a ledger that can't be read
    aborts the whole call with LedgerUnavailable.
    """
    config = session.config
    snapshot = session.ledger.read_all()

    before = reference_day(now or utc_now(), config.zone, config.publication_delay)
    pending = compute_pending(snapshot, config.feeds, before)

    process_logger = ProcessLogger("backlog", reference_day=before, pending_count=len(pending))
    process_logger.log_start()

    report = run_backlog(
        pending,
        lambda day: run_day(session, day),
        concurrency=concurrency,
        limit=limit,
        dry_run=dry_run,
        stop_event=session.stop_event,
        deadline=deadline,
    )

    process_logger.add_metadata(
        succeeded_count=len(report.succeeded),
        failed_count=len(report.failed),
        skipped_count=len(report.skipped),
        print_log=False,
    )
    process_logger.log_complete()
    return report
